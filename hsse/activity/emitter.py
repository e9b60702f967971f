"""
HSSE Activity - audit trail emitter.

log_activity() is the single entry point for recording who changed what.
It must never break the caller's flow, so storage failures are logged and
swallowed.
"""
import logging
from typing import Dict, Optional

from hsse.db import ts
from .models import insert_activity

logger = logging.getLogger(__name__)


def log_activity(
    entity_type: str,
    entity_id: Optional[int],
    action: str,
    user: Optional[str] = None,
    summary: Optional[str] = None,
    details: Optional[Dict] = None,
) -> Optional[int]:
    """Record an audit trail entry. Returns the entry id, or None on failure."""
    try:
        return insert_activity(ts(), entity_type, entity_id, action, user,
                               summary or f"{entity_type} {action}", details)
    except Exception as e:
        logger.error(f"[Activity] log_activity failed for {entity_type}/{entity_id}: {e}")
        return None
