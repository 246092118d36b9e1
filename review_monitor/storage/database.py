"""Database connection and session management"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base


Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Owns the async engine and session factory for one store.

    Postgres (asyncpg) in deployment, SQLite (aiosqlite) locally and in tests.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine = create_async_engine(
            url,
            echo=echo,
            pool_pre_ping=True if "postgresql" in url else False,
        )
        if url.startswith("sqlite"):
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_config(cls, config) -> "Database":
        return cls(config.async_database_url, echo=config.database_echo)

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def init(self) -> None:
        """Create all tables"""
        # Registers the table classes on Base.metadata
        from review_monitor.storage import tables  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
