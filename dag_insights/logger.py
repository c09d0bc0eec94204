#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Logger -- sets the logging and provides a `logger` global object.

Every record goes to standard output and, once `set_logger` was given a
directory, is appended to a plain text log file as
`[MM/dd/yy HH:mm:ss] - <message>`.
"""

import contextlib
import inspect
import logging
import os
import sys
import time
from datetime import datetime, timezone
from functools import wraps
from types import TracebackType
from typing import Mapping, Optional, Tuple, Type, Union

import ecs_logging
from dateutil.tz import tzlocal

from dag_insights import __version__

FILE_LOG_FORMAT = "[%(asctime)s] - %(message)s"
FILE_DATE_FMT = "%m/%d/%y %H:%M:%S"
FILE_ENCODING = "utf-8"

logger_initialized = False
_file_handler = None


class ColorFormatter(logging.Formatter):
    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"
    COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    DATE_FMT = "%H:%M:%S"

    def __init__(self, prefix) -> None:
        self.custom_format = "[" + prefix + "][%(asctime)s][%(levelname)s] %(message)s"
        super().__init__(datefmt=self.DATE_FMT)
        self.local_tz = tzlocal()

    def converter(self, timestamp: float) -> datetime:
        dt = datetime.fromtimestamp(timestamp, self.local_tz)
        return dt.astimezone(timezone.utc)

    # override logging.Formatter to use an aware datetime object
    def formatTime(
        self, record: logging.LogRecord, datefmt: Optional[str] = None
    ) -> str:
        dt = self.converter(record.created)
        if datefmt:
            s = dt.strftime(datefmt)
        else:
            s = dt.isoformat(timespec="milliseconds")
        return s

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        self._style._fmt = (
            self.COLORS.get(record.levelno, self.GREY)
            + self.custom_format
            + self.RESET
        )
        return super().format(record)


class AppendingFileHandler(logging.FileHandler):
    """Appends each record to the log file, opening and closing it every time.

    No file handle survives between two records. A failed append is reported
    on standard output and never raised to the caller.
    """

    def __init__(self, directory, filename) -> None:
        super().__init__(
            os.path.join(directory, filename),
            mode="a",
            encoding=FILE_ENCODING,
            delay=True,
        )
        self.setFormatter(logging.Formatter(FILE_LOG_FORMAT, datefmt=FILE_DATE_FMT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            os.makedirs(os.path.dirname(self.baseFilename), exist_ok=True)
            super().emit(record)
        except OSError:
            self.handleError(record)
        finally:
            self._close_stream()

    def _close_stream(self) -> None:
        self.acquire()
        try:
            if self.stream is not None:
                stream, self.stream = self.stream, None
                stream.close()
        finally:
            self.release()

    def handleError(self, record: logging.LogRecord) -> None:
        err = sys.exc_info()[1]
        print(  # noqa: T201
            f"Unable to append to log file {self.baseFilename}: {err}",
            file=sys.stdout,
        )


class ExtraLogger(logging.Logger):
    def _log(
        self,
        level: int,
        msg: str,
        args: Union[Mapping[str, object], Tuple[object, ...]],
        exc_info: Union[
            None,
            BaseException,
            bool,
            Tuple[Type[BaseException], BaseException, Optional[TracebackType]],
            Tuple[None, ...],
        ] = None,
        extra: Optional[Mapping[str, object]] = None,
        stack_info: bool = False,
        stacklevel: int = 1,
    ) -> None:
        extra = dict(extra or {})
        extra.update(
            {
                "service.type": "dag-insights",
                "service.version": __version__,
            }
        )
        super(ExtraLogger, self)._log(
            level, msg, args, exc_info, extra, stack_info, stacklevel
        )


logging.setLoggerClass(ExtraLogger)
logger: logging.Logger = logging.getLogger("dag_insights")
logging.setLoggerClass(logging.Logger)


def prepare_log_directory(directory):
    """Creates the log directory. `OSError` propagates: nothing can be logged."""
    os.makedirs(directory, exist_ok=True)


def set_logger(
    log_level: Union[int, str] = logging.INFO,
    filebeat: bool = False,
    directory: Optional[str] = None,
    filename: Optional[str] = None,
):
    global logger_initialized
    global _file_handler

    if filebeat:
        formatter = ecs_logging.StdlibFormatter()
    else:
        formatter = ColorFormatter("DAG")

    if not logger_initialized:
        logger.handlers.clear()
        handler = logging.StreamHandler(sys.stdout)
        logger.addHandler(handler)
        logger_initialized = True

    if isinstance(log_level, str):
        log_level = log_level.upper()

    logger.propagate = False
    logger.setLevel(log_level)
    logger.handlers[0].setLevel(log_level)
    logger.handlers[0].setFormatter(formatter)
    logger.filebeat = filebeat  # pyright: ignore

    if directory is not None and filename is not None:
        prepare_log_directory(directory)
        if _file_handler is not None:
            logger.removeHandler(_file_handler)
        _file_handler = AppendingFileHandler(directory, filename)
        _file_handler.setLevel(log_level)
        logger.addHandler(_file_handler)

    return logger


def log_decision(entity, action, message, level=logging.INFO, **fields):
    """Single structured log line for a dispatcher decision point.

    `fields` are appended to the message as `key=value` pairs and exposed to
    the ECS formatter under `dag.*`.
    """
    entity_name = getattr(entity, "value", entity)
    details = ", ".join(
        f"{key}={getattr(value, 'value', value)}"
        for key, value in fields.items()
        if value is not None
    )
    line = f"[{entity_name}] {message}"
    if details:
        line = f"{line} ({details})"

    extra = {"dag.entity": entity_name, "dag.action": action}
    logger.log(level, line, extra=extra)
    return line


#
# Remote calls are timed and dropped into the logger at DEBUG level.
#


@contextlib.contextmanager
def timed_execution(name, func_name, slow_log=None):
    """Context manager to log time execution in DEBUG

    - name: prefix used for the log message
    - func_name: additional prefix for the function name
    - slow_log: if given a treshold time in seconds. if it runs faster, no log
      is emited
    """
    start = time.time()
    try:
        yield
    finally:
        delta = time.time() - start
        if slow_log is None or delta > slow_log:
            logger.debug(f"[{name}] {func_name} took {delta} seconds.")


class CustomTracer:
    def start_as_current_span(self, name, func_name=None, slow_log=None):
        def _wrapped(func):
            span_name = func_name or func.__name__

            if inspect.iscoroutinefunction(func):

                @wraps(func)
                async def _awrapped(*args, **kw):
                    with timed_execution(name, span_name, slow_log):
                        return await func(*args, **kw)

                return _awrapped

            @wraps(func)
            def __wrapped(*args, **kw):
                with timed_execution(name, span_name, slow_log):
                    return func(*args, **kw)

            return __wrapped

        return _wrapped


tracer = CustomTracer()
set_logger()
