from datetime import datetime
import json

from jobflow.extensions import db


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, nullable=True, index=True)
    action = db.Column(db.String(80), nullable=False, index=True)
    target_type = db.Column(db.String(40), nullable=False, default="order")
    target_id = db.Column(db.String(120), nullable=True, index=True)
    details_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def details_dict(self) -> dict:
        raw = self.details_json
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, dict):
                return parsed
        except Exception:
            pass
        return {"raw": str(raw)}

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "actor_id": int(self.actor_id) if self.actor_id is not None else None,
            "action": self.action or "",
            "target_type": self.target_type or "",
            "target_id": self.target_id or "",
            "details": self.details_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
