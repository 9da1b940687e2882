from .transaction import Transaction
from .budget import Budget
from .anomaly import Anomaly
from .audit_log import AuditLog

__all__ = ["Transaction", "Budget", "Anomaly", "AuditLog"]
