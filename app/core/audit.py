"""Audit trail for state-changing operations (table: audit_log)."""
import logging
from typing import Any, Dict, Optional

from supabase import Client

from app.core.timeutils import utcnow

logger = logging.getLogger(__name__)


def record_audit_event(
    supabase: Client,
    action: str,
    resource_type: str,
    resource_id: str,
    actor_id: Optional[str] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
) -> None:
    """Insert one audit row. Failures are logged and never interrupt the caller."""
    try:
        supabase.table("audit_log").insert({
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "actor_id": actor_id,
            "old_values": old_values,
            "new_values": new_values,
            "created_at": utcnow().isoformat(),
        }).execute()
    except Exception as e:
        logger.error(f"Error writing audit event {action} for {resource_type}/{resource_id}: {e}")
