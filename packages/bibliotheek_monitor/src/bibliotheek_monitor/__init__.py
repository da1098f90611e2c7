"""
Bibliotheek Monitor - Keeps track of loans across bibliotheek.be memberships.

This package combines the loans of every membership of one login into a
single snapshot, reports when loans enter the warning window or go overdue,
and extends loans in batches before they are due.
"""

from bibliotheek_monitor.aggregator import LoanAggregator
from bibliotheek_monitor.changes import ChangeDetector, diff_snapshots
from bibliotheek_monitor.config import ConfigError, MonitorConfig
from bibliotheek_monitor.extension import ExtensionCoordinator, ExtensionReport, select_eligible
from bibliotheek_monitor.merge import days_remaining, loan_key, merge_loans, reconcile
from bibliotheek_monitor.models import (
    AccountView,
    DaysChanged,
    Event,
    Loan,
    LoanExpiringSoon,
    LoanOverdue,
    Snapshot,
)
from bibliotheek_monitor.scheduler import PollingScheduler
from bibliotheek_monitor.service import LoanMonitor, LoggingTriggerSink, RefreshResult
from bibliotheek_monitor.storage import JsonFileStore, MemoryStore, Store

__all__ = [
    "LoanAggregator",
    "ChangeDetector",
    "diff_snapshots",
    "ConfigError",
    "MonitorConfig",
    "ExtensionCoordinator",
    "ExtensionReport",
    "select_eligible",
    "days_remaining",
    "loan_key",
    "merge_loans",
    "reconcile",
    "AccountView",
    "DaysChanged",
    "Event",
    "Loan",
    "LoanExpiringSoon",
    "LoanOverdue",
    "Snapshot",
    "PollingScheduler",
    "LoanMonitor",
    "LoggingTriggerSink",
    "RefreshResult",
    "JsonFileStore",
    "MemoryStore",
    "Store",
]
