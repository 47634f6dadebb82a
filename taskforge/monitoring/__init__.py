"""Monitoring module for taskforge."""

from taskforge.monitoring.health_check import HealthChecker, check_health

__all__ = ["HealthChecker", "check_health"]
