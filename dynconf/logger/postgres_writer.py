"""Batched system_log writer."""

import asyncio
import contextlib
import json
import sys
import threading
from collections.abc import Sequence
from typing import Any

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as Connection

from dynconf.logger.types import Level, LogEntry

INSERT_QUERY = """
    INSERT INTO system_log (
        created_at, service_name, instance_id, environment,
        level, category, function_name, file_path, line_number,
        message, exception_details, context, duration_ms
    ) VALUES %s
"""


def _to_row(entry: LogEntry) -> tuple[Any, ...]:
    """Column values in INSERT_QUERY order."""
    context = json.dumps(entry.context, default=str) if entry.context is not None else None
    return (
        entry.created_at,
        entry.service_name,
        entry.instance_id,
        entry.environment,
        entry.level.value,
        entry.category.value if entry.category else None,
        entry.function_name,
        entry.file_path,
        entry.line_number,
        entry.message,
        entry.exception_details,
        context,
        entry.duration_ms,
    )


def _to_stderr_line(entry: LogEntry) -> str:
    data: dict[str, Any] = {
        "created_at": entry.created_at.isoformat(),
        "level": entry.level.value,
        "category": entry.category.value if entry.category else None,
        "service_name": entry.service_name,
        "environment": entry.environment,
        "message": entry.message,
    }
    if entry.exception_details:
        data["exception_details"] = entry.exception_details
    if entry.context:
        data["context"] = entry.context
    try:
        return json.dumps(data, default=str)
    except (TypeError, ValueError):
        return f"[{entry.level.value}] {data['category']}: {entry.message}"


class PostgresWriter:
    """
    Buffers log entries and inserts them into system_log in batches.

    Entries arrive from the event loop and from asyncio.to_thread workers
    (repositories log from there), so the buffer and the connection are
    guarded by one threading.Lock. A batch is written once it reaches
    batch_size or an entry at flush_level or above arrives; the background
    task and close() write whatever is left. Logging is best effort: a batch
    that cannot be inserted is printed to stderr as JSON lines and dropped.
    """

    def __init__(
        self,
        dsn: str,
        batch_size: int = 100,
        flush_interval: float = 5.0,
        flush_level: Level = Level.ERROR,
    ) -> None:
        """
        Initialize PostgresWriter.

        Args:
            dsn: PostgreSQL connection string
            batch_size: Entries per insert
            flush_interval: Seconds between background flushes
            flush_level: Entries at this level or above are written at once
        """
        self.dsn = dsn
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.flush_level = flush_level
        self.buffer: list[LogEntry] = []
        self._lock = threading.Lock()
        self._conn: Connection | None = None
        self._flush_task: asyncio.Task[None] | None = None
        self._closed = False

    def connect(self) -> None:
        """Open the dedicated log connection (blocking)."""
        try:
            conn = psycopg2.connect(self.dsn)
            conn.set_session(autocommit=False)
        except Exception as e:
            print(f"[LOGGER ERROR] Failed to connect to PostgreSQL: {e}", file=sys.stderr)
            raise
        with self._lock:
            self._conn = conn

    def start(self) -> None:
        """Start the periodic flush; needs a running event loop."""
        if self._flush_task is None:
            self._flush_task = asyncio.create_task(self._flush_periodically())

    def write(self, entry: LogEntry) -> None:
        if self._closed:
            return
        with self._lock:
            self.buffer.append(entry)
            urgent = entry.level.severity >= self.flush_level.severity
            if urgent or len(self.buffer) >= self.batch_size:
                self._drain_buffer()

    def flush(self) -> None:
        """Write everything buffered so far (blocking)."""
        with self._lock:
            self._drain_buffer()

    def _drain_buffer(self) -> None:
        # Вызывается только под self._lock
        batch, self.buffer = self.buffer, []
        if not batch:
            return
        if self._conn is None:
            self._print_batch(batch)
            return

        try:
            with self._conn.cursor() as cursor:
                psycopg2.extras.execute_values(
                    cursor,
                    INSERT_QUERY,
                    [_to_row(entry) for entry in batch],
                    page_size=self.batch_size,
                )
            self._conn.commit()
        except Exception as e:
            print(f"[LOGGER ERROR] Failed to insert logs into PostgreSQL: {e}", file=sys.stderr)
            with contextlib.suppress(Exception):
                self._conn.rollback()
            self._print_batch(batch)

    @staticmethod
    def _print_batch(batch: Sequence[LogEntry]) -> None:
        for entry in batch:
            print(_to_stderr_line(entry), file=sys.stderr)

    async def _flush_periodically(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.flush_interval)
            try:
                await asyncio.to_thread(self.flush)
            except Exception as e:
                print(f"[LOGGER ERROR] Background flush failed: {e}", file=sys.stderr)

    async def close(self) -> None:
        """Stop the periodic flush, write what is left and close the connection."""
        if self._closed:
            return

        task, self._flush_task = self._flush_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await asyncio.to_thread(self.flush)
        self._closed = True

        with self._lock:
            conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()
