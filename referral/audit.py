from extensions import db
from models import AuditLog


def record_audit(actor_id, action: str, **details) -> AuditLog:
    """Stage an audit row in the current transaction. The caller commits."""
    entry = AuditLog(actor_id=actor_id, action=action, details=_json_safe(details))
    db.session.add(entry)
    return entry


def _json_safe(value):
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)
