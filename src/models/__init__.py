"""Database model type definitions."""

from src.models.audit_log import AuditLogEntry, AuditSeverity
from src.models.order import Order, OrderItem, OrderStatus, OrderUpdate, PaymentStatus

__all__ = [
    "AuditLogEntry",
    "AuditSeverity",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderUpdate",
    "PaymentStatus",
]
