import logging
import sys
from typing import ClassVar

# Attributes every LogRecord carries; anything else on a record came from `extra`.
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class ContextFormatter(logging.Formatter):
    """Appends keyword context (passed as `extra`) as sorted key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if not context:
            return base
        pairs = " ".join(f"{key}={context[key]}" for key in sorted(context))
        return f"{base} | {pairs}"


class Log:
    """Centralized logging for the processing core.

    Keyword arguments become structured context on the record, e.g.
    ``Log.info("Deleted pages", document_id=doc.id, pages_deleted=2)``.
    """

    _logger: ClassVar[logging.Logger] = logging.getLogger("docproc")

    @classmethod
    def configure(cls, log_level: str) -> None:
        """Configure the logger with the specified level and stdout handler."""
        cls._logger.setLevel(log_level.upper())
        if not cls._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(
                ContextFormatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            )
            cls._logger.addHandler(handler)

    @classmethod
    def info(cls, message: str, **context: object) -> None:
        cls._logger.info(message, extra=context)

    @classmethod
    def error(cls, message: str, **context: object) -> None:
        cls._logger.error(message, extra=context)

    @classmethod
    def warning(cls, message: str, **context: object) -> None:
        cls._logger.warning(message, extra=context)

    @classmethod
    def debug(cls, message: str, **context: object) -> None:
        cls._logger.debug(message, extra=context)

    @classmethod
    def exception(cls, message: str, **context: object) -> None:
        """Log an error with the active exception's traceback."""
        cls._logger.exception(message, extra=context)
