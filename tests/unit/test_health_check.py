"""Unit tests for health checks."""

from datetime import timedelta

import pytest

from taskforge.core.config import Settings
from taskforge.decomposition.models import utc_now
from taskforge.decomposition.operations import OperationKind, OperationRegistry
from taskforge.monitoring.health_check import HealthChecker, check_health
from taskforge.sessions.service import DecompositionService
from taskforge.storage.database import Database
from taskforge.storage.memory import InMemoryTaskStore


class TestConfigurationCheck:
    """Tests for the API key check."""

    @pytest.mark.asyncio
    async def test_configured(self, test_settings: Settings) -> None:
        """Test a well-formed key."""
        result = await HealthChecker(settings=test_settings).check_configuration()

        assert result["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_missing_key(self, test_settings: Settings) -> None:
        """Test that a missing key is unhealthy."""
        settings = test_settings.model_copy(update={"anthropic_api_key": None})

        result = await HealthChecker(settings=settings).check_configuration()

        assert result["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_unexpected_format(self) -> None:
        """Test that an odd key format is degraded."""
        result = await HealthChecker(
            settings=Settings(anthropic_api_key="not-a-real-key")
        ).check_configuration()

        assert result["status"] == "degraded"


class TestStorageCheck:
    """Tests for the storage check."""

    @pytest.mark.asyncio
    async def test_without_database(self, test_settings: Settings) -> None:
        """Test that no database means in-memory storage."""
        result = await HealthChecker(settings=test_settings).check_storage()

        assert result["message"] == "In-memory storage"

    @pytest.mark.asyncio
    async def test_sqlite(self, test_settings: Settings) -> None:
        """Test connectivity against a temporary SQLite database."""
        database = Database(test_settings.taskforge_database_url)
        try:
            result = await HealthChecker(settings=test_settings, database=database).check_storage()
        finally:
            await database.close()

        assert result["status"] == "healthy"


class TestOperationAndSessionChecks:
    """Tests for operation and session reporting."""

    @pytest.mark.asyncio
    async def test_long_running_operations_degrade(self, test_settings: Settings) -> None:
        """Test that long-running operations are reported as degraded."""
        now = utc_now()
        clock = [now]
        registry = OperationRegistry(long_running_seconds=10, clock=lambda: clock[0])
        registry.start(OperationKind.SPLIT, "T1", "op-1")
        clock[0] = now + timedelta(seconds=30)

        result = await HealthChecker(
            settings=test_settings, registry=registry
        ).check_operations()

        assert result["status"] == "degraded"
        assert result["message"] == "1 active, 1 long-running, 0 stale removed"

    @pytest.mark.asyncio
    async def test_stale_operations_dropped(self, test_settings: Settings) -> None:
        """Test that operations past the stale threshold are removed and counted."""
        now = utc_now()
        clock = [now]
        registry = OperationRegistry(long_running_seconds=300, stale_seconds=900,
                                     clock=lambda: clock[0])
        registry.start(OperationKind.DECOMPOSITION, "T1", "op-1")
        clock[0] = now + timedelta(minutes=10)
        registry.start(OperationKind.ANALYSIS, "T2", "op-2")
        clock[0] = now + timedelta(minutes=16)

        result = await HealthChecker(
            settings=test_settings, registry=registry
        ).check_operations()

        assert result["details"]["stale_operations_removed"] == 1
        assert [op.operation_id for op in registry.active_operations()] == ["op-2"]
        assert result["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_sessions_reported(
        self, test_settings: Settings, scripted_llm, atomic_task, project_context
    ) -> None:
        """Test that session statistics come from the attached service."""
        service = DecompositionService(scripted_llm, InMemoryTaskStore(), settings=test_settings)
        session = service.start_decomposition(atomic_task, project_context)
        await service.wait_for_session(session.id)

        checker = HealthChecker(settings=test_settings, service=service)
        result = await checker.check_sessions()

        assert checker.registry is service.registry
        assert result["status"] == "healthy"
        assert result["details"]["completed_sessions"] == 1


class TestCheckAll:
    """Tests for the aggregate status."""

    @pytest.mark.asyncio
    async def test_worst_status_wins(
        self, test_settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that one unhealthy check makes the whole system unhealthy."""
        checker = HealthChecker(settings=test_settings.model_copy(
            update={"anthropic_api_key": None}
        ))

        async def plenty_of_space() -> dict:
            return {"name": "disk_space", "status": "healthy", "message": "ok"}

        monkeypatch.setattr(checker, "check_disk_space", plenty_of_space)

        health = await checker.check_all()

        assert health["status"] == "unhealthy"
        assert [c["name"] for c in health["checks"]] == [
            "configuration", "storage", "operations", "sessions", "disk_space",
        ]

    @pytest.mark.asyncio
    async def test_disk_space_reported(self, test_settings: Settings) -> None:
        """Test that disk usage is measured for a not yet created directory."""
        result = await HealthChecker(settings=test_settings).check_disk_space()

        assert result["status"] in {"healthy", "degraded", "unhealthy"}
        assert "free_gb" in result["details"]

    @pytest.mark.asyncio
    async def test_check_health(self, test_settings: Settings) -> None:
        """Test the convenience function against the configured database."""
        health = await check_health(test_settings)

        storage = next(c for c in health["checks"] if c["name"] == "storage")
        assert storage["status"] == "healthy"
