from typing import AsyncGenerator
import ssl

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from shop.core.config import DATABASE_URL, DB_TYPE

Base = declarative_base()


def _engine_options() -> dict:
    if DB_TYPE != "postgres":
        return {}

    # SSL for managed Postgres behind PgBouncer
    ssl_ctx = ssl.create_default_context()
    ssl_ctx.check_hostname = False
    ssl_ctx.verify_mode = ssl.CERT_NONE
    return {
        "pool_size": 5,
        "max_overflow": 10,
        "connect_args": {
            # prepared statements break under PgBouncer transaction pooling
            "statement_cache_size": 0,
            "prepared_statement_cache_size": 0,
            "ssl": ssl_ctx,
        },
    }


engine = create_async_engine(DATABASE_URL, echo=False, future=True, **_engine_options())

AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


def _sqlite_on_connect(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    # the driver's implicit BEGIN breaks SAVEPOINT; transactions are begun in _sqlite_on_begin
    dbapi_connection.isolation_level = None


def _sqlite_on_begin(conn):
    conn.exec_driver_sql("BEGIN")


def configure_sqlite(async_engine) -> None:
    event.listen(async_engine.sync_engine, "connect", _sqlite_on_connect)
    event.listen(async_engine.sync_engine, "begin", _sqlite_on_begin)


if DB_TYPE == "sqlite":
    configure_sqlite(engine)

import shop.models  # noqa: E402,F401  registers every table on Base.metadata


async def init_models():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
