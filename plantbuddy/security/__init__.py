"""Role-based access control for client operations."""

from plantbuddy.security.access_policy import Operation, allowed_operations, is_allowed, operation_for

__all__ = ["Operation", "allowed_operations", "is_allowed", "operation_for"]
