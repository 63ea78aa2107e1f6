from jobflow.models.order import Order
from jobflow.models.order_file import OrderFile
from jobflow.models.balance import Balance
from jobflow.models.earnings_event import EarningsEvent
from jobflow.models.status_log import JobStatusLog
from jobflow.models.notification import Notification
from jobflow.models.audit_log import AuditLog
from jobflow.models.idempotency_key import IdempotencyKey
from jobflow.models.task_run import TaskRun
from jobflow.models.reconciliation_report import ReconciliationReport

__all__ = [
    "Order",
    "OrderFile",
    "Balance",
    "EarningsEvent",
    "JobStatusLog",
    "Notification",
    "AuditLog",
    "IdempotencyKey",
    "TaskRun",
    "ReconciliationReport",
]
