from datetime import datetime

from jobflow.extensions import db


class EarningsEvent(db.Model):
    __tablename__ = "earnings_events"
    __table_args__ = (
        db.UniqueConstraint("order_id", "beneficiary_id", "earning_type", name="uq_earnings_event_once"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("jobs.id"), nullable=False, index=True)
    beneficiary_id = db.Column(db.Integer, nullable=False, index=True)
    beneficiary_role = db.Column(db.String(16), nullable=False)
    earning_type = db.Column(db.String(32), nullable=False)  # assignment_fee | submission_fee | completion_payout
    amount_minor = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self):
        from jobflow.utils.earnings import money_minor_to_major

        return {
            "id": int(self.id) if self.id is not None else None,
            "order_id": int(self.order_id),
            "beneficiary_id": int(self.beneficiary_id),
            "beneficiary_role": self.beneficiary_role or "",
            "earning_type": self.earning_type or "",
            "amount": str(money_minor_to_major(self.amount_minor)),
            "amount_minor": int(self.amount_minor or 0),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
