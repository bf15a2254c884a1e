"""Audit Log - append-only trail of environment switches, deployments and cancellations"""
from .audit_log import AuditLog, AuditOperation

__all__ = ["AuditLog", "AuditOperation"]
