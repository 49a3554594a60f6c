"""
Health checks behind the liveness and readiness probes.

Readiness depends on the database only. The outbox backlog is reported
alongside it so operators can see a stalled publisher, but a backlog never
makes the service unready: payments keep being accepted and the events
drain once the stream is back.
"""
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fx_platform.database.connection import get_session_factory
from fx_platform.database.models import OutboxEvent

logger = structlog.get_logger(__name__)

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


class HealthCheckError(Exception):
    """Raised when a dependency cannot be reached."""

    pass


class HealthCheck:
    """Runs dependency checks against the database."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def _scalar(self, name: str, stmt: Any) -> Any:
        try:
            async with self.session_factory() as db:
                return (await db.execute(stmt)).scalar_one()
        except (SQLAlchemyError, OSError) as e:
            logger.error("health_check_failed", check=name, error=str(e))
            raise HealthCheckError(f"{name} check failed: {e}") from e

    async def check_database(self) -> Dict[str, Any]:
        """
        Round-trip ``SELECT 1``.

        Raises:
            HealthCheckError: If the database is unreachable
        """
        await self._scalar("database", text("SELECT 1"))
        return {"status": HEALTHY, "service": "database"}

    async def check_outbox(self) -> Dict[str, Any]:
        """
        Count unpublished outbox events.

        Raises:
            HealthCheckError: If the outbox table cannot be read
        """
        pending = await self._scalar(
            "outbox",
            select(func.count(OutboxEvent.id)).where(OutboxEvent.published == False),  # noqa: E712
        )
        return {"status": HEALTHY, "service": "outbox", "pending_events": pending}

    async def check_all(self) -> Dict[str, Any]:
        """Run every check; any failure makes the overall status unhealthy."""
        checks: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]] = {
            "database": self.check_database,
            "outbox": self.check_outbox,
        }
        results: Dict[str, Any] = {}
        for name, check in checks.items():
            try:
                results[name] = await check()
            except HealthCheckError as e:
                results[name] = {"status": UNHEALTHY, "service": name, "error": str(e)}

        healthy = all(result["status"] == HEALTHY for result in results.values())
        return {"status": HEALTHY if healthy else UNHEALTHY, "checks": results}

    async def liveness(self) -> Dict[str, Any]:
        # The process answering is the whole check
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        return await self.check_all()
