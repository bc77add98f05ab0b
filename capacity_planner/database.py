"""Database engine, session factory and declarative base."""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from capacity_planner.config import settings

# Base class for models
Base = declarative_base()


def create_engine(database_url: str = settings.DATABASE_URL, echo: bool = settings.SQL_ECHO) -> AsyncEngine:
    """
    Create the async engine for a database URL.

    SQLite connections get an explicit BEGIN per transaction so that every
    read inside one unit of work sees the same snapshot (pysqlite otherwise
    autocommits SELECTs), and foreign keys are enforced so deleting a
    scenario cascades to its overlay entries.
    """
    engine = create_async_engine(database_url, echo=echo)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            # disable the driver's own BEGIN handling; "begin" below emits it
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by every unit of work."""
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


engine = create_engine()
async_session_maker = create_session_factory(engine)


async def init_db(bind: AsyncEngine = engine) -> None:
    """Initialize database tables."""
    # Register models with Base.metadata
    from capacity_planner.data import models as data_models  # noqa: F401
    from capacity_planner.scenarios import models as scenario_models  # noqa: F401
    from capacity_planner.audit import models as audit_models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
