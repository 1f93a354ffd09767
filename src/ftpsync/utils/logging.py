"""Logging configuration and utilities."""

import functools
import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import List, Optional

import structlog
import colorlog
from structlog.typing import Processor


LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}

# Handlers attached to the root logger by the last setup_logging call
_installed_handlers: List[logging.Handler] = []


class ColoredProcessorFormatter(structlog.stdlib.ProcessorFormatter, colorlog.ColoredFormatter):
    """Renders structlog events and colors the line by level."""
    pass


def _shared_processors() -> List[Processor]:
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _json_processors() -> List[Processor]:
    return [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Route structlog and stdlib records through the console and file handlers.

    Calling it again replaces the handlers installed by the previous call.
    """
    from ..config.settings import get_settings

    settings = get_settings()

    level = (log_level or settings.logging.level).upper()
    format_type = log_format or settings.logging.format
    file_path = log_file or settings.logging.file_path

    root = logging.getLogger()
    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()
    root.setLevel(getattr(logging, level))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if file_path:
        _install(root, setup_file_logging(file_path, level))

    _install(root, setup_console_logging(level, json_output=format_type == "json"))


def _install(root: logging.Logger, handler: logging.Handler) -> None:
    root.addHandler(handler)
    _installed_handlers.append(handler)


def setup_file_logging(file_path: str, level: str) -> logging.Handler:
    """Create a rotating handler writing one JSON object per line."""
    log_file = Path(file_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        file_path,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding="utf-8"
    )
    file_handler.setLevel(getattr(logging, level.upper()))
    file_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=_json_processors(),
        foreign_pre_chain=_shared_processors()
    ))
    return file_handler


def setup_console_logging(level: str, json_output: bool = False) -> logging.Handler:
    """Create a stdout handler, colored by level unless JSON is requested."""
    console_handler = colorlog.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))

    if json_output:
        formatter = structlog.stdlib.ProcessorFormatter(
            processors=_json_processors(),
            foreign_pre_chain=_shared_processors()
        )
    else:
        formatter = ColoredProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=False),
            ],
            foreign_pre_chain=_shared_processors(),
            fmt="%(log_color)s%(message)s",
            log_colors=LOG_COLORS,
            reset=True,
            stream=sys.stdout,
        )
    console_handler.setFormatter(formatter)
    return console_handler


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_async_execution_time(func):
    """Decorator to log how long a sync phase coroutine took."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        logger = get_logger(func.__name__)
        start_time = time.time()

        try:
            result = await func(*args, **kwargs)
            execution_time = time.time() - start_time
            logger.info(
                "Phase finished",
                function=func.__qualname__,
                execution_time=f"{execution_time:.4f}s"
            )
            return result
        except Exception as e:
            execution_time = time.time() - start_time
            logger.error(
                "Phase failed",
                function=func.__qualname__,
                execution_time=f"{execution_time:.4f}s",
                error=str(e)
            )
            raise

    return wrapper
