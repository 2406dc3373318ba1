"""Scheduling utilities for recurring maintenance."""

from .config import JobDefinition, RetryPolicy, load_job_definitions
from .runner import MaintenanceJobScheduler

__all__ = ["JobDefinition", "MaintenanceJobScheduler", "RetryPolicy", "load_job_definitions"]
