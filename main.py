# ================================================================
# HSSE - Application entry point
# Health, Safety, Security & Environment management backend
# ================================================================

import logging

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from hsse import __version__
from hsse.config import SECRET_KEY, configure_logging, init_config_schema
from hsse.errors import register_error_handlers
from hsse.activity.routes import register_activity_routes
from hsse.auth import register_auth_routes
from hsse.users import register_user_routes
from hsse.modules import register_module_routes
from hsse.realtime import register_realtime_routes
from hsse.incidents import register_incident_routes
from hsse.hazards import register_hazard_routes
from hsse.ppe import register_ppe_routes
from hsse.trainings import register_training_routes
from hsse.licenses import register_license_routes
from hsse.work_permits import register_work_permit_routes
from hsse.waste import register_waste_routes
from hsse.audits import register_audit_routes
from hsse.inspections import register_inspection_routes
from hsse.security_incidents import register_security_incident_routes
from hsse.health import register_health_routes
from hsse.dashboard import register_dashboard_routes
from hsse.settings import register_settings_routes
from hsse.scheduler import start_scheduler, stop_scheduler
from hsse.seed import seed_all

configure_logging()
logger = logging.getLogger("hsse")

# ================================================================
# FASTAPI APP
# ================================================================

app = FastAPI(title="HSSE Management", version=__version__)
app.add_middleware(SessionMiddleware, secret_key=SECRET_KEY)
register_error_handlers(app)

# ================================================================
# SCHEMA + ROUTERS
# ================================================================

init_config_schema()

register_auth_routes(app)
register_user_routes(app)
register_module_routes(app)
register_activity_routes(app)
register_realtime_routes(app)

register_incident_routes(app)
register_hazard_routes(app)
register_ppe_routes(app)
register_training_routes(app)
register_license_routes(app)
register_work_permit_routes(app)
register_waste_routes(app)
register_audit_routes(app)
register_inspection_routes(app)
register_security_incident_routes(app)
register_health_routes(app)

register_dashboard_routes(app)
register_settings_routes(app)


@app.on_event("startup")
async def _startup():
    seed_all()
    start_scheduler()
    logger.info("[Startup] HSSE %s ready", __version__)


@app.on_event("shutdown")
async def _shutdown():
    stop_scheduler()


@app.get("/api/health")
async def health_check():
    return {"ok": True, "status": "healthy", "version": __version__}
