"""order lifecycle core

Revision ID: c1a0f3e5b7d2
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "c1a0f3e5b7d2"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    try:
        return sa.inspect(bind).has_table(table_name)
    except Exception:
        return False


def _index_exists(bind, table_name: str, index_name: str) -> bool:
    try:
        rows = sa.inspect(bind).get_indexes(table_name)
        return any((r.get("name") or "") == index_name for r in rows)
    except Exception:
        return False


def _create_index(bind, name: str, table: str, cols: list[str], *, unique: bool = False) -> None:
    if not _index_exists(bind, table, name):
        op.create_index(name, table, cols, unique=unique)


def _create_jobs(bind):
    if _table_exists(bind, "jobs"):
        return
    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_number", sa.String(length=32), nullable=True, unique=True),
        sa.Column("title", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("writer_id", sa.Integer(), nullable=True),
        sa.Column("manager_id", sa.Integer(), nullable=True),
        sa.Column("pages", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("slides", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_minor", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("writer_earnings_minor", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("manager_earnings_minor", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("platform_profit_minor", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
        sa.Column("held_from_status", sa.String(length=24), nullable=True),
        sa.Column("requires_reports", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("admin_approved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("client_approved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payment_confirmed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("final_submission_complete", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("revision_submission_complete", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("revision_requested", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("revision_notes", sa.Text(), nullable=True),
        sa.Column("revision_base_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("assignment_fee_credited", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("submission_fee_credited", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deadline", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_minor >= 0", name="ck_jobs_amount_nonnegative"),
        sa.CheckConstraint(
            "writer_earnings_minor + manager_earnings_minor + platform_profit_minor <= amount_minor",
            name="ck_jobs_split_within_amount",
        ),
    )
    _create_index(bind, "ix_jobs_client_id", "jobs", ["client_id"])
    _create_index(bind, "ix_jobs_writer_id", "jobs", ["writer_id"])
    _create_index(bind, "ix_jobs_manager_id", "jobs", ["manager_id"])
    _create_index(bind, "ix_jobs_status", "jobs", ["status"])


def _create_order_files(bind):
    if _table_exists(bind, "order_files"):
        return
    op.create_table(
        "order_files",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("uploaded_by", sa.Integer(), nullable=False),
        sa.Column("file_type", sa.String(length=32), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("file_url", sa.Text(), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("mime_type", sa.String(length=120), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("meta", sa.Text(), nullable=True),
        sa.Column("version_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("order_id", "version_number", name="uq_order_files_order_version"),
    )
    _create_index(bind, "ix_order_files_order_id", "order_files", ["order_id"])
    _create_index(bind, "ix_order_files_uploaded_by", "order_files", ["uploaded_by"])
    _create_index(bind, "ix_order_files_file_type", "order_files", ["file_type"])


def _create_ledger(bind):
    if not _table_exists(bind, "balances"):
        op.create_table(
            "balances",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("role", sa.String(length=16), nullable=False),
            sa.Column("available_minor", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("pending_minor", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_earned_minor", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("user_id", "role", name="uq_balances_user_role"),
        )
        _create_index(bind, "ix_balances_user_id", "balances", ["user_id"])
    if not _table_exists(bind, "earnings_events"):
        op.create_table(
            "earnings_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
            sa.Column("beneficiary_id", sa.Integer(), nullable=False),
            sa.Column("beneficiary_role", sa.String(length=16), nullable=False),
            sa.Column("earning_type", sa.String(length=32), nullable=False),
            sa.Column("amount_minor", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("order_id", "beneficiary_id", "earning_type", name="uq_earnings_event_once"),
        )
        _create_index(bind, "ix_earnings_events_order_id", "earnings_events", ["order_id"])
        _create_index(bind, "ix_earnings_events_beneficiary_id", "earnings_events", ["beneficiary_id"])
        _create_index(bind, "ix_earnings_events_created_at", "earnings_events", ["created_at"])


def _create_status_logs(bind):
    if _table_exists(bind, "job_status_logs"):
        return
    op.create_table(
        "job_status_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("old_status", sa.String(length=24), nullable=True),
        sa.Column("new_status", sa.String(length=24), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_role", sa.String(length=16), nullable=False, server_default="system"),
        sa.Column("note", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    _create_index(bind, "ix_job_status_logs_order_id", "job_status_logs", ["order_id"])
    _create_index(bind, "ix_job_status_logs_created_at", "job_status_logs", ["created_at"])


def _create_side_effect_sinks(bind):
    if not _table_exists(bind, "notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("order_id", sa.Integer(), nullable=True),
            sa.Column("type", sa.String(length=64), nullable=False, server_default="general"),
            sa.Column("title", sa.String(length=160), nullable=True),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="queued"),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("read_at", sa.DateTime(), nullable=True),
            sa.Column("meta", sa.Text(), nullable=True),
        )
        _create_index(bind, "ix_notifications_user_id", "notifications", ["user_id"])
        _create_index(bind, "ix_notifications_order_id", "notifications", ["order_id"])
    if not _table_exists(bind, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(length=80), nullable=False),
            sa.Column("target_type", sa.String(length=40), nullable=False, server_default="order"),
            sa.Column("target_id", sa.String(length=120), nullable=True),
            sa.Column("details_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        _create_index(bind, "ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
        _create_index(bind, "ix_audit_logs_action", "audit_logs", ["action"])
        _create_index(bind, "ix_audit_logs_target_id", "audit_logs", ["target_id"])
        _create_index(bind, "ix_audit_logs_created_at", "audit_logs", ["created_at"])


def _create_ops_tables(bind):
    if not _table_exists(bind, "idempotency_keys"):
        op.create_table(
            "idempotency_keys",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(length=128), nullable=False),
            sa.Column("scope", sa.String(length=128), nullable=False, server_default=""),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("request_hash", sa.String(length=64), nullable=False, server_default=""),
            sa.Column("response_json", sa.Text(), nullable=True),
            sa.Column("status_code", sa.Integer(), nullable=False, server_default="200"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
        )
        _create_index(bind, "ix_idempotency_keys_key", "idempotency_keys", ["key"])
    if not _table_exists(bind, "task_runs"):
        op.create_table(
            "task_runs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("task_name", sa.String(length=64), nullable=False),
            sa.Column("ran_at", sa.DateTime(), nullable=False),
            sa.Column("ok", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
        )
        _create_index(bind, "ix_task_runs_task_name", "task_runs", ["task_name"])
        _create_index(bind, "ix_task_runs_ran_at", "task_runs", ["ran_at"])
        _create_index(bind, "ix_task_runs_ok", "task_runs", ["ok"])
    if not _table_exists(bind, "reconciliation_reports"):
        op.create_table(
            "reconciliation_reports",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("scope", sa.String(length=64), nullable=False, server_default="earnings_ledger"),
            sa.Column("balance_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("drift_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("summary_json", sa.Text(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        _create_index(bind, "ix_reconciliation_reports_created_at", "reconciliation_reports", ["created_at"])


def upgrade():
    bind = op.get_bind()
    _create_jobs(bind)
    _create_order_files(bind)
    _create_ledger(bind)
    _create_status_logs(bind)
    _create_side_effect_sinks(bind)
    _create_ops_tables(bind)


def downgrade():
    bind = op.get_bind()
    for table in (
        "reconciliation_reports",
        "task_runs",
        "idempotency_keys",
        "audit_logs",
        "notifications",
        "job_status_logs",
        "earnings_events",
        "balances",
        "order_files",
        "jobs",
    ):
        if _table_exists(bind, table):
            op.drop_table(table)
