from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shared.db.models import Base
from shared.helper.HelperConfig import HelperConfig


class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, helper_config: HelperConfig, url: str | None = None):
        self.logging = helper_config.get_logger()
        self.url = url or helper_config.get_string_val("DB_URL", default="sqlite+aiosqlite:///./docmind.db")
        self.engine: AsyncEngine = self._create_engine(self.url, helper_config.get_bool_val("DB_ECHO", default=False))
        self.sessionmaker = async_sessionmaker(
            self.engine,
            expire_on_commit=False,
            class_=AsyncSession,
            autoflush=False,
        )

    @staticmethod
    def _create_engine(url: str, echo: bool) -> AsyncEngine:
        if url.startswith("sqlite"):
            kwargs: dict = {"connect_args": {"check_same_thread": False}}
            # in-memory databases only live as long as their single connection
            if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
                kwargs["poolclass"] = StaticPool
            engine = create_async_engine(url, echo=echo, **kwargs)

            @event.listens_for(engine.sync_engine, "connect")
            def _enable_foreign_keys(dbapi_connection, _connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

            return engine
        return create_async_engine(url, echo=echo, pool_pre_ping=True)

    async def init_db(self) -> None:
        """Create tables that do not exist yet. Called once at startup."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logging.info("Database initialised (%s)", self.engine.url.render_as_string(hide_password=True))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction that commits on success and rolls back on error."""
        async with self.sessionmaker() as session:
            async with session.begin():
                yield session

    async def close(self) -> None:
        await self.engine.dispose()
