from sqlalchemy import create_engine, event, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from booknexus.core.config import settings
import logging
import time

logger = logging.getLogger(__name__)

logger.info("BOOKNEXUS DATABASE_URL = %s", settings.get_masked_database_url())


def enable_sqlite_savepoints(target_engine) -> None:
    """
    Make pysqlite honour BEGIN/SAVEPOINT and foreign keys.

    The stock driver manages transactions itself, which breaks SAVEPOINT;
    we take over BEGIN so nested transactions (per-row inserts) work.
    """

    @event.listens_for(target_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(target_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


# Create engine with connection pooling and pre-ping to verify connections
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    connect_args=settings.database_connect_args,
    echo=False,
)

if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)

# Add slow query logging (DEBUG mode only)
if settings.DEBUG:
    SLOW_QUERY_THRESHOLD_MS = 200.0

    @event.listens_for(engine, "before_cursor_execute")
    def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        """Store query start time before execution."""
        context._query_start_time = time.perf_counter()

    @event.listens_for(engine, "after_cursor_execute")
    def receive_after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        """Log slow queries after execution."""
        if hasattr(context, "_query_start_time"):
            elapsed_ms = (time.perf_counter() - context._query_start_time) * 1000
            if elapsed_ms >= SLOW_QUERY_THRESHOLD_MS:
                statement_first_line = statement.split("\n")[0].strip()[:100]
                logger.warning(
                    f"SLOW_QUERY: {elapsed_ms:.2f}ms - {statement_first_line}"
                )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """
    Create any missing tables.

    WARNING: create_all() will NOT add missing columns to existing tables.
    It only creates tables that don't exist.
    """
    # Import all models to ensure they're registered with Base.metadata
    from booknexus import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def dialect_insert(db: Session, model):
    """
    Return an INSERT construct that supports ON CONFLICT for the session's backend.

    Conflict handling has to be a single statement so concurrent writers
    racing on the same unique key both end up with the stored row.
    """
    dialect_name = db.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(model)
    if dialect_name == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Conflict-tolerant inserts are not supported on {dialect_name}")


def check_db_health(target_engine=None) -> dict[str, str]:
    """Ping the database and report pool statistics."""
    target_engine = target_engine or engine
    stats: dict[str, str] = {}

    try:
        with target_engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("db down: %s", e)
        stats["status"] = "down"
        stats["error"] = f"db down: {e}"
        return stats

    stats["status"] = "up"
    stats["message"] = "It's healthy"

    pool = target_engine.pool
    checked_out = pool.checkedout() if hasattr(pool, "checkedout") else 0
    idle = pool.checkedin() if hasattr(pool, "checkedin") else 0
    stats["open_connections"] = str(checked_out + idle)
    stats["in_use"] = str(checked_out)
    stats["idle"] = str(idle)
    return stats
