# db.py
from contextlib import contextmanager

from psycopg2.pool import ThreadedConnectionPool

from settings import settings

_pool: ThreadedConnectionPool | None = None


def init_pool():
    """
    Open the PostgreSQL pool. Lazy on first use; main calls it at startup
    when TX_STORE_BACKEND=postgres so a bad DATABASE_URL fails the boot.
    """
    global _pool
    if _pool is None:
        # request handlers run in the threadpool, so the pool must be thread-safe
        _pool = ThreadedConnectionPool(
            minconn=settings.DB_POOL_MIN,
            maxconn=settings.DB_POOL_MAX,
            dsn=settings.DATABASE_URL,
            connect_timeout=5,
            application_name="smartchange_api",
        )


def close_pool():
    global _pool
    if _pool:
        _pool.closeall()
        _pool = None


@contextmanager
def get_conn():
    """
    One transaction per `with` block: commit on success, rollback on error.
    """
    if _pool is None:
        init_pool()

    conn = _pool.getconn()
    try:
        with conn.cursor() as cur:
            cur.execute("SET statement_timeout = %s;", (f"{settings.DB_STATEMENT_TIMEOUT_MS}ms",))
            cur.execute("SET idle_in_transaction_session_timeout = %s;", (f"{settings.DB_STATEMENT_TIMEOUT_MS}ms",))

        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        _pool.putconn(conn)
