"""
Definition stores and audit sinks.
"""

from .base import AuditSink, DefinitionStore, summarize_records
from .memory import InMemoryAuditSink, InMemoryDefinitionStore

__all__ = [
    "AuditSink",
    "DefinitionStore",
    "InMemoryAuditSink",
    "InMemoryDefinitionStore",
    "summarize_records",
]
