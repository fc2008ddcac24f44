"""Logger module for dynconf."""

from dynconf.logger.error_sink import ErrorSink
from dynconf.logger.logger import Logger, get_logger, init_logger
from dynconf.logger.postgres_writer import PostgresWriter
from dynconf.logger.types import Category, Field, Level, LogEntry

__all__ = [
    "Logger",
    "get_logger",
    "init_logger",
    "ErrorSink",
    "PostgresWriter",
    "Category",
    "Level",
    "LogEntry",
    "Field",
]
