from datetime import datetime

from jobflow.extensions import db


class Order(db.Model):
    """A client job tracked through the lifecycle state machine.

    Money columns hold integer minor units (cents). ``version_id`` is the
    optimistic lock counter; every flush that touches the row bumps it and a
    mismatch raises ``StaleDataError``.
    """

    __tablename__ = "jobs"
    __table_args__ = (
        db.CheckConstraint("amount_minor >= 0", name="ck_jobs_amount_nonnegative"),
        db.CheckConstraint(
            "writer_earnings_minor + manager_earnings_minor + platform_profit_minor <= amount_minor",
            name="ck_jobs_split_within_amount",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=True, unique=True, index=True)
    title = db.Column(db.String(200), nullable=False, default="", server_default="")

    client_id = db.Column(db.Integer, nullable=False, index=True)
    writer_id = db.Column(db.Integer, nullable=True, index=True)
    manager_id = db.Column(db.Integer, nullable=True, index=True)

    pages = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    slides = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    amount_minor = db.Column(db.Integer, nullable=False, default=0)
    writer_earnings_minor = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    manager_earnings_minor = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    platform_profit_minor = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    status = db.Column(db.String(24), nullable=False, default="pending", server_default="pending", index=True)
    held_from_status = db.Column(db.String(24), nullable=True)

    requires_reports = db.Column(db.Boolean, nullable=False, default=True)
    admin_approved = db.Column(db.Boolean, nullable=False, default=False)
    client_approved = db.Column(db.Boolean, nullable=False, default=False)
    payment_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    final_submission_complete = db.Column(db.Boolean, nullable=False, default=False)
    revision_submission_complete = db.Column(db.Boolean, nullable=False, default=False)
    revision_requested = db.Column(db.Boolean, nullable=False, default=False)
    revision_notes = db.Column(db.Text, nullable=True)
    revision_base_version = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    assignment_fee_credited = db.Column(db.Boolean, nullable=False, default=False)
    submission_fee_credited = db.Column(db.Boolean, nullable=False, default=False)

    deadline = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1, server_default="1")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def unit_count(self) -> int:
        # Pages drive per-unit fees; slide-only orders fall back to slides.
        pages = int(self.pages or 0)
        if pages > 0:
            return pages
        slides = int(self.slides or 0)
        if slides > 0:
            return slides
        return 1

    @property
    def display_id(self) -> str:
        if self.order_number:
            return self.order_number
        return f"#{int(self.id)}" if self.id is not None else "#new"

    def to_dict(self):
        from jobflow.utils.earnings import money_minor_to_major

        return {
            "id": int(self.id) if self.id is not None else None,
            "order_number": self.order_number or "",
            "title": self.title or "",
            "client_id": int(self.client_id) if self.client_id is not None else None,
            "writer_id": int(self.writer_id) if self.writer_id is not None else None,
            "manager_id": int(self.manager_id) if self.manager_id is not None else None,
            "pages": int(self.pages or 0),
            "slides": int(self.slides or 0),
            "unit_count": self.unit_count,
            "amount": str(money_minor_to_major(self.amount_minor)),
            "amount_minor": int(self.amount_minor or 0),
            "writer_earnings_minor": int(self.writer_earnings_minor or 0),
            "manager_earnings_minor": int(self.manager_earnings_minor or 0),
            "platform_profit_minor": int(self.platform_profit_minor or 0),
            "status": self.status or "pending",
            "held_from_status": self.held_from_status or None,
            "requires_reports": bool(self.requires_reports),
            "admin_approved": bool(self.admin_approved),
            "client_approved": bool(self.client_approved),
            "payment_confirmed": bool(self.payment_confirmed),
            "final_submission_complete": bool(self.final_submission_complete),
            "revision_submission_complete": bool(self.revision_submission_complete),
            "revision_requested": bool(self.revision_requested),
            "revision_notes": self.revision_notes or "",
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "version": int(self.version_id or 0),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
