"""Neo4j driver setup and session management.

Provides the async Neo4j driver, connectivity checks, schema setup and the
``GraphStore`` handle through which every engine component talks to the
database. ``GraphStore`` is constructed explicitly once per process and
passed to each component; it owns the driver, opens one scoped session per
logical operation, bounds each call with a timeout, and converts
store-native values to Python types. No other module converts driver types.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncManagedTransaction
from neo4j.exceptions import ConstraintError, DriverError, Neo4jError
from neo4j.graph import Node, Relationship
from neo4j.spatial import Point
from neo4j.time import Date, DateTime, Duration, Time

from organograph.core.config import Settings
from organograph.core.exceptions import StoreError, UniquenessConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


def create_neo4j_driver(settings: Settings) -> AsyncDriver:
    """Create an async Neo4j driver.

    Args:
        settings: Application settings with Neo4j connection details.

    Returns:
        An async Neo4j driver instance.
    """
    driver = AsyncGraphDatabase.driver(
        settings.neo4j_uri,
        auth=(settings.neo4j_user, settings.neo4j_password),
        max_connection_pool_size=settings.neo4j_max_connection_pool_size,
    )
    return driver


async def verify_neo4j_connectivity(driver: AsyncDriver) -> bool:
    """Verify that the Neo4j driver can connect.

    Returns:
        True if the connection is successful, False otherwise.
    """
    try:
        await driver.verify_connectivity()
        return True
    except (Neo4jError, DriverError, OSError):
        logger.exception("Failed to connect to Neo4j")
        return False


def to_native(value: Any) -> Any:
    """Convert store-native values to plain Python values.

    Temporal types become ``datetime`` objects, durations without a month
    component become ``timedelta`` (others keep their ISO form), spatial
    points become coordinate dicts, graph nodes and relationships become
    plain maps keyed by element ID. Lists and maps are converted recursively.
    """
    if isinstance(value, (Date, DateTime, Time)):
        return value.to_native()
    if isinstance(value, Duration):
        if value.months:
            return value.iso_format()
        return datetime.timedelta(
            days=value.days,
            seconds=value.seconds,
            microseconds=value.nanoseconds // 1000,
        )
    if isinstance(value, Point):
        return {"srid": value.srid, "coordinates": [float(c) for c in value]}
    if isinstance(value, Node):
        return {
            "id": value.element_id,
            "labels": sorted(value.labels),
            "props": {key: to_native(item) for key, item in value.items()},
        }
    if isinstance(value, Relationship):
        return {
            "id": value.element_id,
            "type": value.type,
            "start": value.start_node.element_id if value.start_node is not None else None,
            "end": value.end_node.element_id if value.end_node is not None else None,
            "props": {key: to_native(item) for key, item in value.items()},
        }
    if isinstance(value, dict):
        return {key: to_native(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_native(item) for item in value]
    return value


class StoreTransaction:
    """A managed transaction handed to units of work.

    Wraps the driver transaction so callers only ever see converted rows.
    """

    def __init__(self, tx: AsyncManagedTransaction) -> None:
        self._tx = tx

    async def run(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Run one Cypher query and return its rows as plain dicts."""
        result = await self._tx.run(query, parameters or {})
        records = await result.data()
        return [to_native(record) for record in records]


class GraphStore:
    """Long-lived handle to the property-graph store.

    Each call acquires its own session (read or write mode as declared by
    the caller) and releases it on every exit path, so one instance is safe
    to share between concurrent callers.
    """

    def __init__(self, settings: Settings, driver: AsyncDriver | None = None) -> None:
        """Initialize the store.

        Args:
            settings: Application settings with Neo4j connection details.
            driver: Optional pre-built driver; created on ``connect()`` if
                omitted.
        """
        self._settings = settings
        self._driver = driver
        self._database = settings.neo4j_database
        self._timeout = settings.neo4j_query_timeout_seconds

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def driver(self) -> AsyncDriver:
        if self._driver is None:
            raise StoreError("Graph store is not connected")
        return self._driver

    async def connect(self) -> None:
        """Create the driver if needed and run the startup connectivity check.

        Raises:
            StoreError: If Neo4j cannot be reached.
        """
        if self._driver is None:
            self._driver = create_neo4j_driver(self._settings)
        if not await verify_neo4j_connectivity(self._driver):
            raise StoreError(f"Cannot connect to Neo4j at {self._settings.neo4j_uri}")
        logger.info("Neo4j connection verified (%s)", self._settings.neo4j_uri)

    async def close(self) -> None:
        """Close the driver and release pooled connections."""
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            logger.info("Neo4j connection closed")

    async def verify_connectivity(self) -> bool:
        """Return True when the store currently answers."""
        if self._driver is None:
            return False
        return await verify_neo4j_connectivity(self._driver)

    async def __aenter__(self) -> GraphStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -----------------------------------------------------------------
    # Query execution
    # -----------------------------------------------------------------

    async def execute_read(self, work: Callable[[StoreTransaction], Awaitable[T]]) -> T:
        """Run a unit of work inside one managed read transaction."""
        return await self._execute("read", work)

    async def execute_write(self, work: Callable[[StoreTransaction], Awaitable[T]]) -> T:
        """Run a unit of work inside one managed write transaction.

        Every query issued by ``work`` commits or rolls back together.
        """
        return await self._execute("write", work)

    async def read(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Execute a single read-only Cypher query.

        Args:
            query: Cypher query string with $parameter placeholders.
            parameters: Query parameters.

        Returns:
            List of result records as dicts.
        """

        async def _work(tx: StoreTransaction) -> list[dict[str, Any]]:
            return await tx.run(query, parameters)

        return await self.execute_read(_work)

    async def write(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Execute a single Cypher query within a write transaction."""

        async def _work(tx: StoreTransaction) -> list[dict[str, Any]]:
            return await tx.run(query, parameters)

        return await self.execute_write(_work)

    async def _execute(
        self,
        mode: str,
        work: Callable[[StoreTransaction], Awaitable[T]],
    ) -> T:
        async def _tx_func(tx: AsyncManagedTransaction) -> T:
            return await work(StoreTransaction(tx))

        try:
            async with asyncio.timeout(self._timeout):
                async with self.driver.session(database=self._database) as session:
                    if mode == "write":
                        return await session.execute_write(_tx_func)
                    return await session.execute_read(_tx_func)
        except ConstraintError as exc:
            raise UniquenessConflict(exc.message or str(exc)) from exc
        except TimeoutError as exc:
            logger.warning("Neo4j %s transaction exceeded %.1fs", mode, self._timeout)
            raise StoreError(f"Graph store call timed out after {self._timeout}s") from exc
        except (Neo4jError, DriverError) as exc:
            logger.exception("Neo4j %s transaction failed", mode)
            raise StoreError(str(exc)) from exc


async def setup_neo4j_constraints(store: GraphStore, statements: Iterable[str]) -> int:
    """Create Neo4j constraints and indexes.

    Each statement runs in its own schema transaction; all statements are
    expected to be idempotent (``IF NOT EXISTS``).

    Returns:
        Number of statements executed.
    """
    executed = 0
    for statement in statements:
        await store.write(statement)
        executed += 1
    logger.info("Neo4j constraints and indexes created (%d statements)", executed)
    return executed
