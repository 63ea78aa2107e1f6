from datetime import datetime
import json

from jobflow.extensions import db


class OrderFile(db.Model):
    __tablename__ = "order_files"
    __table_args__ = (
        db.UniqueConstraint("order_id", "version_number", name="uq_order_files_order_version"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("jobs.id"), nullable=False, index=True)
    uploaded_by = db.Column(db.Integer, nullable=False, index=True)

    file_type = db.Column(db.String(32), nullable=False, index=True)
    file_name = db.Column(db.String(255), nullable=True)
    file_url = db.Column(db.Text, nullable=True)
    file_size = db.Column(db.Integer, nullable=True)
    mime_type = db.Column(db.String(120), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    meta = db.Column(db.Text, nullable=True)  # JSON string

    version_number = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def meta_dict(self) -> dict:
        raw = (self.meta or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {}
        except Exception:
            return {}

    def to_dict(self):
        return {
            "id": int(self.id) if self.id is not None else None,
            "order_id": int(self.order_id),
            "uploaded_by": int(self.uploaded_by),
            "file_type": self.file_type or "",
            "file_name": self.file_name or "",
            "file_url": self.file_url or "",
            "file_size": int(self.file_size) if self.file_size is not None else None,
            "mime_type": self.mime_type or "",
            "notes": self.notes or "",
            "meta": self.meta_dict(),
            "version_number": int(self.version_number or 0),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
