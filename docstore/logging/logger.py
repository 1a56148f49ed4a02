import contextvars
import logging
import sys
from collections.abc import Generator
from contextlib import contextmanager

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s task=%(task_id)s %(message)s"

_current_task: contextvars.ContextVar[str] = contextvars.ContextVar("docstore_task", default="-")


class _TaskContextFilter(logging.Filter):
    """Stamps every record with the id of the task being processed, or '-'."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.task_id = _current_task.get()
        return True


class Log:
    """Centralized logging for the docstore services and dispatcher workers."""

    _logger: logging.Logger = logging.getLogger("docstore")
    _logger.addFilter(_TaskContextFilter())

    @classmethod
    def configure(cls, log_level: str) -> None:
        """Set the level and attach a single stdout handler."""
        cls._logger.setLevel(log_level.upper())
        if not cls._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            cls._logger.addHandler(handler)

    @classmethod
    def set_level(cls, log_level: str) -> str:
        """Change the log level at runtime. Returns the previous level name."""
        previous = logging.getLevelName(cls._logger.level)
        cls._logger.setLevel(log_level.upper())
        cls._logger.info(f"Log level changed from {previous} to {log_level.upper()}")
        return previous

    @classmethod
    @contextmanager
    def task_context(cls, task_id: str) -> Generator[None, None, None]:
        """Tag records logged inside the block with task_id."""
        token = _current_task.set(task_id)
        try:
            yield
        finally:
            _current_task.reset(token)

    @classmethod
    def info(cls, message: str, **kwargs: object) -> None:
        """Log an info message."""
        cls._logger.info(message, extra=kwargs)

    @classmethod
    def error(cls, message: str, **kwargs: object) -> None:
        """Log an error message."""
        cls._logger.error(message, extra=kwargs)

    @classmethod
    def exception(cls, message: str, **kwargs: object) -> None:
        """Log at error level with the active exception's traceback."""
        cls._logger.exception(message, extra=kwargs)

    @classmethod
    def warning(cls, message: str, **kwargs: object) -> None:
        """Log a warning message."""
        cls._logger.warning(message, extra=kwargs)

    @classmethod
    def debug(cls, message: str, **kwargs: object) -> None:
        """Log a debug message."""
        cls._logger.debug(message, extra=kwargs)
