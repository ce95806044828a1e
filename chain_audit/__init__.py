"""Offline audit of the VitalAI document chain over the HTTP API."""
from .config import AuditConfig

__all__ = ["AuditConfig"]

# Run audit: from chain_audit.audit import run_audit
# CLI (from project root): python -m chain_audit
