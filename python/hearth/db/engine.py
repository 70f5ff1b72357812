"""SQLAlchemy engine creation for the embedded SQLite store.

The engine is created once per Store and shared by every transaction.
WAL journaling lets read transactions proceed while the single writer holds
its transaction open.

Transactions: the pysqlite driver's implicit transaction handling is turned
off and every SQLAlchemy transaction emits its own BEGIN, so a read
transaction keeps one WAL snapshot for all of its statements.
"""

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine


def _apply_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    # Driver must not open or commit transactions on its own
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def _begin(conn: Connection) -> None:
    conn.exec_driver_sql("BEGIN")


def create_db_engine(database_path: str) -> Engine:
    """Create a SQLAlchemy engine for a SQLite database file.

    Args:
        database_path: Filesystem path of the database file. Parent
            directories are created if missing.

    Returns:
        Configured SQLAlchemy engine.
    """
    path = Path(database_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        f"sqlite+pysqlite:///{path}",
        connect_args={"check_same_thread": False},
        pool_pre_ping=True,
        echo=False,
    )
    event.listen(engine, "connect", _apply_sqlite_pragmas)
    event.listen(engine, "begin", _begin)
    return engine
