# tasks/__init__.py
from getnet_gateway.tasks.reconciliation import ReconciliationScheduler
from getnet_gateway.tasks.sweeper import RetrySweeper

__all__ = ["ReconciliationScheduler", "RetrySweeper"]
