"""Health check utilities for taskforge."""

import shutil
from pathlib import Path
from typing import Any

from loguru import logger

from taskforge.core.config import Settings, get_settings
from taskforge.decomposition.models import utc_now
from taskforge.decomposition.operations import OperationRegistry
from taskforge.sessions.service import DecompositionService
from taskforge.storage.database import Database


class HealthChecker:
    """
    System health checker.

    Verifies configuration, storage connectivity, in-flight operations and
    session activity.

    Example:
        >>> checker = HealthChecker(registry=engine.registry)
        >>> health = await checker.check_all()
        >>> health["status"]
        'healthy'
    """

    def __init__(
        self,
        settings: Settings | None = None,
        database: Database | None = None,
        registry: OperationRegistry | None = None,
        service: DecompositionService | None = None,
    ) -> None:
        """
        Initialize the health checker.

        Args:
            settings: Settings (defaults to ``get_settings()``).
            database: Database to probe; the storage check is skipped if omitted.
            registry: Operation registry to inspect.
            service: Decomposition service whose sessions are reported.
        """
        self.settings = settings or get_settings()
        self.database = database
        self.registry = registry or (service.registry if service else None)
        self.service = service

    async def check_configuration(self) -> dict[str, Any]:
        """
        Check API key configuration.

        Returns:
            Health check result.
        """
        key = self.settings.anthropic_api_key
        if key is None or not key.get_secret_value():
            return {
                "name": "configuration",
                "status": "unhealthy",
                "message": "ANTHROPIC_API_KEY not configured",
            }
        if not key.get_secret_value().startswith("sk-ant-"):
            return {
                "name": "configuration",
                "status": "degraded",
                "message": "API key format unexpected",
            }
        return {
            "name": "configuration",
            "status": "healthy",
            "message": f"API key configured, model {self.settings.taskforge_llm_model}",
        }

    async def check_storage(self) -> dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Health check result.
        """
        if self.database is None:
            return {"name": "storage", "status": "healthy", "message": "In-memory storage"}

        healthy = await self.database.health_check()
        return {
            "name": "storage",
            "status": "healthy" if healthy else "unhealthy",
            "message": "Connected" if healthy else "Connection failed",
        }

    async def check_operations(self) -> dict[str, Any]:
        """
        Drop stale decomposition operations and report long-running ones.

        Returns:
            Health check result.
        """
        if self.registry is None:
            return {"name": "operations", "status": "healthy", "message": "No registry attached"}

        stale = self.registry.cleanup_stale_operations()
        health = self.registry.health()
        health["stale_operations_removed"] = stale
        long_running = health["long_running_operations"]
        return {
            "name": "operations",
            "status": "healthy" if health["healthy"] else "degraded",
            "message": (
                f"{health['active_operations']} active, {len(long_running)} long-running, "
                f"{stale} stale removed"
            ),
            "details": health,
        }

    async def check_sessions(self) -> dict[str, Any]:
        """
        Report decomposition session activity.

        Returns:
            Health check result.
        """
        if self.service is None:
            return {"name": "sessions", "status": "healthy", "message": "No service attached"}

        stats = self.service.get_statistics()
        total = stats["total_sessions"]
        failed = stats["failed_sessions"]
        status = "degraded" if total and failed / total > 0.5 else "healthy"
        return {
            "name": "sessions",
            "status": status,
            "message": f"{stats['active_sessions']} active, {failed}/{total} failed",
            "details": stats,
        }

    async def check_disk_space(self) -> dict[str, Any]:
        """
        Check free space where artifacts are written.

        Returns:
            Health check result.
        """
        path = Path(self.settings.taskforge_output_dir)
        while not path.exists() and path != path.parent:
            path = path.parent

        try:
            total, used, free = shutil.disk_usage(path)
        except OSError as e:
            return {"name": "disk_space", "status": "unknown", "message": str(e)}

        free_gb = free / (1024**3)
        used_percent = (used / total) * 100

        if free_gb < 1:
            status = "unhealthy"
            message = f"Low disk space: {free_gb:.1f}GB free"
        elif free_gb < 5:
            status = "degraded"
            message = f"Disk space warning: {free_gb:.1f}GB free"
        else:
            status = "healthy"
            message = f"{free_gb:.1f}GB free ({used_percent:.1f}% used)"

        return {
            "name": "disk_space",
            "status": status,
            "message": message,
            "details": {"free_gb": round(free_gb, 2), "used_percent": round(used_percent, 1)},
        }

    async def check_all(self) -> dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Aggregate health status.
        """
        logger.info("Running health checks")

        checks = [
            await self.check_configuration(),
            await self.check_storage(),
            await self.check_operations(),
            await self.check_sessions(),
            await self.check_disk_space(),
        ]

        statuses = [c["status"] for c in checks]
        if "unhealthy" in statuses:
            overall = "unhealthy"
        elif "degraded" in statuses:
            overall = "degraded"
        else:
            overall = "healthy"

        return {
            "status": overall,
            "timestamp": utc_now().isoformat(),
            "checks": checks,
        }


async def check_health(settings: Settings | None = None) -> dict[str, Any]:
    """
    Convenience function to run health checks against the configured database.

    Returns:
        Health check results.
    """
    settings = settings or get_settings()
    database = Database(settings.taskforge_database_url)
    try:
        return await HealthChecker(settings=settings, database=database).check_all()
    finally:
        await database.close()
