"""
Execution engine for the Automation Service.
"""

from .orchestrator import ExecutionOrchestrator, default_triggered_by, overall_status

__all__ = ["ExecutionOrchestrator", "default_triggered_by", "overall_status"]
