"""Durable failure log used by the refresh and drain paths."""

import contextlib
import sys
import traceback

from dynconf.logger.logger import Logger
from dynconf.logger.types import Category, Field, param


class ErrorSink:
    """
    Append-only failure log backed by the system_log table.

    Every call produces one ERROR entry with the exception details. The sink
    never raises: if the entry cannot be handed to the logger it is printed
    to stderr and dropped.
    """

    def __init__(self, logger: Logger, category: Category | None = None) -> None:
        self.logger = logger.with_category(category) if category else logger

    def log(
        self,
        message: str,
        detail: BaseException | str | None = None,
        *fields: Field,
    ) -> None:
        """
        Append a failure record.

        Args:
            message: Short human readable description
            detail: Exception or preformatted exception text
            fields: Extra structured context
        """
        try:
            self.logger.error(
                message,
                None,
                param("exception_details", self._format_detail(detail)),
                *fields,
            )
        except Exception as e:
            with contextlib.suppress(Exception):
                print(f"[ERROR SINK] {message}: {e}", file=sys.stderr)

    @staticmethod
    def _format_detail(detail: BaseException | str | None) -> str | None:
        if isinstance(detail, BaseException):
            return "".join(
                traceback.format_exception(type(detail), detail, detail.__traceback__)
            )
        return detail
