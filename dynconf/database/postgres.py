"""PostgreSQL connection pool shared by the repositories and the log writer."""

import os
import threading
from typing import Any

from psycopg2.extensions import connection as Connection
from psycopg2.pool import ThreadedConnectionPool

from dynconf.domain.errors import StorageUnavailableError

DB_PASSWORD_SECRET = "/run/secrets/db_password"


class PostgresConfig:
    """
    Connection settings for the configuration store.

    A full connection string (libpq DSN or postgresql:// URL) passed in or
    found in CONFIG_DB_DSN wins over the individual DB_* values.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_conn: int = 1,
        max_conn: int = 5,
        connect_timeout: int = 5,
        connection_string: str | None = None,
    ) -> None:
        self.connection_string = connection_string or os.getenv("CONFIG_DB_DSN") or None
        self.host = host or os.getenv("DB_HOST", "localhost")
        self.port = port or int(os.getenv("DB_PORT", "5432"))
        self.database = database or os.getenv("DB_NAME", "configuration")
        self.user = user or os.getenv("DB_USER", "dynconf")
        self.password = password or self._read_password()
        self.min_conn = min_conn
        self.max_conn = max_conn
        self.connect_timeout = connect_timeout

    @staticmethod
    def _read_password() -> str:
        # Docker secret важнее переменной окружения
        if os.path.exists(DB_PASSWORD_SECRET):
            with open(DB_PASSWORD_SECRET) as f:
                return f.read().strip()
        return os.getenv("DB_PASSWORD", "dynconf")

    @property
    def dsn(self) -> str:
        if self.connection_string:
            return self.connection_string
        parts = {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
        }
        return " ".join(f"{key}={value}" for key, value in parts.items())


class PostgresClient:
    """
    Lazily created ThreadedConnectionPool.

    Nothing connects in __init__: the pool is opened by connect() or by the
    first get_connection(), so a reader can be constructed and started while
    the database is down and pick it up on a later refresh. Pool failures
    surface as StorageUnavailableError.
    """

    def __init__(self, config: PostgresConfig | dict[str, Any] | None) -> None:
        if config is None:
            config = PostgresConfig()
        elif isinstance(config, dict):
            config = PostgresConfig(**config)
        self.config = config
        self.pool: ThreadedConnectionPool | None = None
        self._pool_lock = threading.Lock()
        self._closed = False

    async def connect(self) -> None:
        """Open the pool now instead of on first use; also reopens after close()."""
        with self._pool_lock:
            self._closed = False
        self._ensure_pool()

    def _ensure_pool(self) -> ThreadedConnectionPool:
        with self._pool_lock:
            if self.pool is not None:
                return self.pool
            if self._closed:
                # после close() пул открывает только явный connect()
                raise StorageUnavailableError("connection pool is closed", operation="connect")
            try:
                self.pool = ThreadedConnectionPool(
                    minconn=self.config.min_conn,
                    maxconn=self.config.max_conn,
                    dsn=self.config.dsn,
                )
            except Exception as e:
                raise StorageUnavailableError(str(e), operation="connect") from e
            return self.pool

    async def close(self) -> None:
        """Close every pooled connection. Safe to call repeatedly."""
        with self._pool_lock:
            pool, self.pool = self.pool, None
            self._closed = True
        if pool is not None:
            pool.closeall()

    def get_connection(self) -> Connection:
        pool = self._ensure_pool()
        try:
            return pool.getconn()  # type: ignore[no-any-return]
        except Exception as e:
            # PoolError при исчерпании пула или OperationalError при переподключении
            raise StorageUnavailableError(str(e), operation="getconn") from e

    def put_connection(self, conn: Connection) -> None:
        """Return a connection; one the server already closed is discarded."""
        with self._pool_lock:
            pool = self.pool
        if pool is None:
            # пул закрыли, пока соединение было занято
            conn.close()
            return
        pool.putconn(conn, close=bool(conn.closed))
