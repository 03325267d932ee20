"""Logging setup for sandbox-judge.

The library only ever attaches a NullHandler to the ``sandbox_judge`` logger;
handlers belong to the application. SANDBOX_JUDGE_LOG_LEVEL sets the level at
import time, and configure_logging() is what the sbx-judge CLI calls.

Every judging module logs with structured ``extra=`` fields (submission_id,
env_id, case_index, exit_code, ...). The CLI renders them after the message:

    INFO [2026-02-25 10:02:54] sandbox_judge.supervisor - Runtime fault env_id=3f2a case_index=1 exit_code=1

Records go through a bounded queue drained by a QueueListener thread, so a
judging coroutine never blocks on stderr. Records are dropped when the queue
is full.
"""

import contextlib
import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME: str = "sandbox_judge"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

_env_level = os.environ.get("SANDBOX_JUDGE_LOG_LEVEL", "").strip().upper()
_env_level_value = logging.getLevelNamesMapping().get(_env_level)
if _env_level_value:  # NOTSET and unknown names leave the level alone
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level_value)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# One record per test case per submission adds up quickly.
_QUEUE_CAPACITY = 4096

# Attributes every LogRecord has; anything else came from extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def record_context(record: logging.LogRecord) -> dict[str, object]:
    """Structured fields passed to the logging call through extra=."""
    return {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}


def _render_value(value: object) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text) or "=" in text:
        return repr(text)
    return text


class ContextFormatter(logging.Formatter):
    """Formatter that appends extra= fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        fields = " ".join(f"{key}={_render_value(value)}" for key, value in context.items())
        # Keep the traceback (if any) last
        head, sep, tail = line.partition("\n")
        return f"{head} {fields}{sep}{tail}"


class _ClickHandler(logging.Handler):
    """Writes formatted records to stderr with click.echo, dimmed.

    Called from the QueueListener thread. click strips the styling when
    stderr is not a terminal.
    """

    def __init__(self) -> None:
        super().__init__()
        self.formatter = ContextFormatter(fmt=_FMT, datefmt=_DATEFMT)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(click.style(self.format(record), dim=True), err=True)
        except BlockingIOError:
            pass  # stderr full, drop the record
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _NonBlockingHandler(logging.handlers.QueueHandler):
    """QueueHandler whose enqueue never waits."""

    def __init__(self) -> None:
        records: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_QUEUE_CAPACITY)
        super().__init__(records)
        self._listener = logging.handlers.QueueListener(records, _ClickHandler(), respect_handler_level=False)
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # In-process queue: the record is formatted by _ClickHandler, extras intact
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Logger for a sandbox_judge module (child of the library logger)."""
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Send library logs to stderr. Safe to call more than once.

    Args:
        level: Log level (e.g. logging.DEBUG, "WARNING"). Overrides SANDBOX_JUDGE_LOG_LEVEL.
        quiet: Only log errors. Wins over level.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _NonBlockingHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_NonBlockingHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
