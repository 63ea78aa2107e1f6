from datetime import datetime

from jobflow.extensions import db


class Balance(db.Model):
    """Cached per-user, per-role earnings aggregate.

    ``total_earned_minor`` must always equal the sum of the beneficiary's
    ``earnings_events`` rows for the same role.
    """

    __tablename__ = "balances"
    __table_args__ = (
        db.UniqueConstraint("user_id", "role", name="uq_balances_user_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    role = db.Column(db.String(16), nullable=False)  # writer | manager

    available_minor = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    pending_minor = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    total_earned_minor = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    version_id = db.Column(db.Integer, nullable=False, default=1, server_default="1")
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self):
        from jobflow.utils.earnings import money_minor_to_major

        return {
            "id": int(self.id) if self.id is not None else None,
            "user_id": int(self.user_id),
            "role": self.role or "",
            "available_balance": str(money_minor_to_major(self.available_minor)),
            "pending_balance": str(money_minor_to_major(self.pending_minor)),
            "total_earned": str(money_minor_to_major(self.total_earned_minor)),
            "available_minor": int(self.available_minor or 0),
            "pending_minor": int(self.pending_minor or 0),
            "total_earned_minor": int(self.total_earned_minor or 0),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
