from sqlmodel import SQLModel
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from config import DATABASE_URL, DATABASE_ECHO


def configure_sqlite(engine: AsyncEngine) -> AsyncEngine:
    """
    Let SQLAlchemy own transaction boundaries on SQLite so SAVEPOINTs behave,
    and enforce foreign keys.
    """
    if engine.dialect.name != "sqlite":
        return engine

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


# Create the Async Engine
engine = configure_sqlite(create_async_engine(DATABASE_URL, echo=DATABASE_ECHO, future=True))

async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    # Import for side effect: registers every table on SQLModel.metadata
    import models  # noqa: F401

    async with engine.begin() as conn:
        # This creates the tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncSession:
    async with async_session() as session:
        yield session
