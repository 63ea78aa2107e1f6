from datetime import datetime

from jobflow.extensions import db


class JobStatusLog(db.Model):
    __tablename__ = "job_status_logs"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("jobs.id"), nullable=False, index=True)
    old_status = db.Column(db.String(24), nullable=True)
    new_status = db.Column(db.String(24), nullable=False)
    actor_id = db.Column(db.Integer, nullable=True)
    actor_role = db.Column(db.String(16), nullable=False, default="system")
    note = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            "id": int(self.id) if self.id is not None else None,
            "order_id": int(self.order_id),
            "old_status": self.old_status or None,
            "new_status": self.new_status or "",
            "actor_id": int(self.actor_id) if self.actor_id is not None else None,
            "actor_role": self.actor_role or "system",
            "note": self.note or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
