"""
HSSE - First-run data

Creates the bootstrap SuperAdmin account and the module configuration rows.
Both steps are idempotent and run on every startup.
"""
import logging

from hsse.auth.models import create_user, get_user_by_email
from hsse.auth.permissions import RoleType
from hsse.config import ADMIN_EMAIL, ADMIN_PASSWORD
from hsse.modules import seed_modules

logger = logging.getLogger(__name__)


def ensure_admin(email: str = None, password: str = None):
    email = email or ADMIN_EMAIL
    existing = get_user_by_email(email)
    if existing:
        return existing["id"]
    user_id = create_user({"email": email, "name": "System Administrator", "password": password or ADMIN_PASSWORD},
                          roles=[RoleType.SUPER_ADMIN.value], created_by="system")
    logger.warning("[Seed] Created bootstrap administrator %s; change its password", email)
    return user_id


def seed_all():
    ensure_admin()
    seed_modules()
