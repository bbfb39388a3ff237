"""structlog setup for cryptouser.

The request id is carried in structlog's contextvars, so every event emitted
while a request is being served (store, limiter, credential) is tagged with it
without threading it through call signatures.

Store calls are wrapped in ``store_timer``; its events carry the operation
and the record id so a slow disk shows up against the identity it delayed.
"""

import logging
import sys
import time
from typing import Any, Optional

import structlog
from structlog.types import Processor

REQUEST_ID_KEY = "request_id"

# Store calls slower than this are logged at warning level
SLOW_STORE_MS: float = 50.0


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog: JSON lines in production, colored console locally."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "cryptouser") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: str) -> None:
    """Tag all events logged in the current context with ``request_id``."""
    structlog.contextvars.bind_contextvars(**{REQUEST_ID_KEY: request_id})


def clear_request_id() -> None:
    structlog.contextvars.unbind_contextvars(REQUEST_ID_KEY)


class store_timer:
    """Time one RecordStore call and log its outcome.

    Usage:
        with store_timer("create", logger, record_id="alice1"):
            ...

    Emits ``store.<operation> failed`` when the block raises (at info level for
    an exception listed in ``expected``, at error level otherwise),
    ``store.<operation>`` at warning level above ``threshold_ms``, and at
    debug level otherwise.
    """

    def __init__(
        self,
        operation: str,
        logger: structlog.stdlib.BoundLogger,
        record_id: Optional[str] = None,
        threshold_ms: float = SLOW_STORE_MS,
        expected: tuple[type[BaseException], ...] = (),
    ):
        self.event = f"store.{operation}"
        self.logger = logger
        self.fields: dict[str, Any] = {} if record_id is None else {"record_id": record_id}
        self.threshold_ms = threshold_ms
        self.expected = expected
        self._start = 0.0

    def __enter__(self) -> "store_timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        duration_ms = round((time.perf_counter() - self._start) * 1000, 3)
        if exc_type is not None:
            log = self.logger.info if issubclass(exc_type, self.expected) else self.logger.error
            log(
                f"{self.event} failed",
                duration_ms=duration_ms,
                error_type=exc_type.__name__,
                **self.fields,
            )
            return
        log = self.logger.warning if duration_ms > self.threshold_ms else self.logger.debug
        log(self.event, duration_ms=duration_ms, **self.fields)
