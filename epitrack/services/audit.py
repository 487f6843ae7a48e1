"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings
from .time_rules import now_utc


def compute_integrity_hash(canonical_data: Dict[str, Any], integrity_secret: str) -> str:
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    hash_input = f"{canonical_json}:{integrity_secret}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    actor=None,
    source: Optional[str] = "api",
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None
) -> AuditLog:
    """
    Stage an append-only audit log entry on the session.

    The entry is committed together with the change it describes, so a
    failed request leaves no audit row behind.

    Args:
        db: Database session
        entity_type: Type of entity (user|epi_type|checklist|execution|anomaly)
        entity_id: Entity ID
        action: Action performed (CREATE|UPDATE|DEACTIVATE|APPROVE|REJECT|COMPLETE|...)
        actor: User who performed the action (None for system actions)
        source: Source of the action (api|system|seed)
        changes_json: Before/after diff
        context: Additional context (execution id, request metadata, ...)
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)

    Returns:
        The pending AuditLog object
    """
    timestamp_utc = now_utc()
    actor_id = getattr(actor, "id", None)
    actor_role = getattr(actor, "role", None) if actor is not None else "system"

    integrity_hash = None
    if integrity_secret is None:
        integrity_secret = settings.jwt_secret

    if integrity_secret:
        integrity_hash = compute_integrity_hash(
            {
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action,
                "actor_id": str(actor_id) if actor_id else None,
                "actor_role": actor_role,
                "source": source,
                "timestamp_utc": timestamp_utc.isoformat(),
                "changes": changes_json,
                "context": context,
            },
            integrity_secret,
        )

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        source=source or "system",
        changes_json=json.loads(json.dumps(changes_json, default=str)) if changes_json else None,
        timestamp_utc=timestamp_utc,
        context=json.loads(json.dumps(context, default=str)) if context else None,
        integrity_hash=integrity_hash,
    )
    db.add(audit_log)
    return audit_log


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Args:
        before: Before state
        after: After state

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }
    return diff
