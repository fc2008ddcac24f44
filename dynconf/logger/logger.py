"""Structured logger writing LogEntry rows to system_log."""

import json
import os
import sys
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import PurePath
from types import FrameType
from typing import Any

from dynconf.logger.postgres_writer import PostgresWriter
from dynconf.logger.types import Category, Field, Level, LogEntry

# Поля context, которые переносятся в отдельные колонки system_log
_DURATION_KEY = "duration_ms"
_DETAILS_KEY = "exception_details"
_CATEGORY_KEY = "_category"


def _instance_id() -> str:
    # Pod name в Kubernetes, container id в Docker, иначе случайный id
    return os.getenv("HOSTNAME") or os.getenv("CONTAINER_ID") or str(uuid.uuid4())


def _source_path(filename: str) -> str:
    parts = PurePath(filename).parts
    if "dynconf" in parts:
        return str(PurePath(*parts[parts.index("dynconf") :]))
    return PurePath(filename).name


def _format_exception(err: BaseException) -> str:
    return "".join(traceback.format_exception(type(err), err, err.__traceback__))


class Logger:
    """
    Immutable-ish structured logger.

    with_category() and with_fields() return derived loggers sharing the
    same writer, so components can carry their own defaults. Without a
    writer entries are printed to stdout as one line each.
    """

    # 0: _log, 1: trace/debug/..., 2: caller
    _CALLER_DEPTH = 2

    def __init__(
        self,
        service_name: str,
        environment: str,
        writer: PostgresWriter | None = None,
        level: Level = Level.DEBUG,
    ) -> None:
        self.service_name = service_name
        self.environment = environment
        self.writer = writer
        self.level = level
        self.instance_id = _instance_id()
        self._fields: dict[str, Any] = {}
        self._category: Category | None = None

    def trace(self, msg: str, *fields: Field) -> None:
        self._log(Level.TRACE, msg, None, fields)

    def debug(self, msg: str, *fields: Field) -> None:
        self._log(Level.DEBUG, msg, None, fields)

    def info(self, msg: str, *fields: Field) -> None:
        self._log(Level.INFO, msg, None, fields)

    def warn(self, msg: str, *fields: Field) -> None:
        self._log(Level.WARN, msg, None, fields)

    def error(self, msg: str, err: BaseException | None = None, *fields: Field) -> None:
        """Log an error; a given exception adds its traceback to the entry."""
        self._log(Level.ERROR, msg, err, fields)

    def fatal(self, msg: str, err: BaseException | None = None, *fields: Field) -> None:
        """Log and exit the process."""
        self._log(Level.FATAL, msg, err, fields)
        raise SystemExit(1)

    def with_category(self, category: Category) -> "Logger":
        derived = self._derive()
        derived._category = category
        return derived

    def with_fields(self, *fields: Field) -> "Logger":
        derived = self._derive()
        derived._fields.update((f.key, f.value) for f in fields)
        return derived

    def _derive(self) -> "Logger":
        derived = Logger(self.service_name, self.environment, self.writer, self.level)
        derived.instance_id = self.instance_id
        derived._fields = dict(self._fields)
        derived._category = self._category
        return derived

    def _log(
        self,
        level: Level,
        msg: str,
        err: BaseException | None,
        fields: tuple[Field, ...],
    ) -> None:
        if level.severity < self.level.severity:
            return

        category = self._category
        context = dict(self._fields)
        for f in fields:
            if f.key == _CATEGORY_KEY:
                if isinstance(f.value, Category):
                    category = f.value
            else:
                context[f.key] = f.value

        if err is not None:
            context.setdefault("error", str(err))
        duration = context.pop(_DURATION_KEY, None)
        details = context.pop(_DETAILS_KEY, None)
        if details is None and err is not None and level.severity >= Level.ERROR.severity:
            details = _format_exception(err)

        entry = LogEntry(
            created_at=datetime.now(timezone.utc),
            service_name=self.service_name,
            instance_id=self.instance_id,
            environment=self.environment,
            level=level,
            message=msg,
            category=category,
            exception_details=details,
            context=context or None,
            duration_ms=int(duration) if duration is not None else None,
        )
        self._stamp_caller(entry, sys._getframe(self._CALLER_DEPTH))
        self._emit(entry)

    @staticmethod
    def _stamp_caller(entry: LogEntry, frame: FrameType | None) -> None:
        if frame is None:
            return
        entry.function_name = frame.f_code.co_name
        entry.file_path = _source_path(frame.f_code.co_filename)
        entry.line_number = frame.f_lineno

    def _emit(self, entry: LogEntry) -> None:
        if self.writer is None:
            category = entry.category.value if entry.category else "-"
            line = f"[{entry.level.value}] {category}: {entry.message}"
            if entry.context:
                line = f"{line} {json.dumps(entry.context, default=str)}"
            print(line)
            return

        try:
            self.writer.write(entry)
        except Exception as e:
            print(f"[LOGGER ERROR] Failed to write log: {e}")


_global_logger: Logger | None = None


def get_logger() -> Logger:
    """
    Return the process-wide logger.

    When the library runs inside a service that never called init_logger(),
    a console logger is created on first use.
    """
    global _global_logger
    if _global_logger is None:
        _global_logger = Logger(
            service_name=os.getenv("SERVICE_NAME", "dynconf"),
            environment=os.getenv("ENVIRONMENT", "dev"),
        )
    return _global_logger


def init_logger(
    service_name: str,
    environment: str,
    writer: PostgresWriter | None = None,
    level: Level = Level.DEBUG,
) -> Logger:
    """
    Replace the process-wide logger.

    Args:
        service_name: Service name stored with every entry
        environment: dev, stage, prod
        writer: system_log writer; None prints to stdout
        level: Entries below this level are dropped

    Returns:
        The new global logger
    """
    global _global_logger
    _global_logger = Logger(service_name, environment, writer, level)
    return _global_logger
