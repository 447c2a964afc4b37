"""
Logger Service Module
Centralized logging configuration with rotation, colored console output and
JSON performance records
"""

import json
import logging
import os
import sys
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Any

import colorlog

PERFORMANCE_LOGGER = "matrix.performance"

_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "asctime",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


class LoggerService:
    """
    Centralized logging service with support for:
    - Colored console output (colorlog)
    - Rotating app and error logs
    - Optional JSON structured logs
    - A separate JSON performance log
    """

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = {**self._default_config(), **(config or {})}
        self.loggers: dict[str, logging.Logger] = {}
        self.handlers: dict[str, list[logging.Handler]] = {}
        self._root_handlers: list[logging.Handler] = []

        self.log_dir = Path(self.config["log_dir"]).expanduser()
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            if not os.access(self.log_dir, os.W_OK):
                raise PermissionError(f"Log directory not writable: {self.log_dir}")
        except OSError:
            # Fall back to a local writable directory
            self.log_dir = Path("./logs")
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_root_logger()

    def _default_config(self) -> dict[str, Any]:
        """Default logging configuration"""
        return {
            "log_dir": "./logs",
            "log_level": "INFO",
            "console_level": "INFO",
            "file_level": "DEBUG",
            "max_bytes": 5 * 1024 * 1024,  # 5MB
            "backup_count": 3,
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "date_format": "%Y-%m-%d %H:%M:%S",
            "console_output": True,
            "colored_output": True,
            "file_output": True,
            "json_logs": False,
            "performance_logs": True,
        }

    def _setup_root_logger(self):
        """Configure the root logger"""
        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
        root_logger.handlers = []

        if self.config.get("console_output"):
            self._add_root_handler(self._create_console_handler())

        if self.config.get("file_output"):
            self._add_root_handler(self._create_file_handler("matrix.log"))
            self._add_root_handler(self._create_file_handler("errors.log", level=logging.ERROR))

        if self.config.get("performance_logs"):
            perf_logger = logging.getLogger(PERFORMANCE_LOGGER)
            perf_logger.propagate = False
            perf_handler = self._create_performance_handler()
            perf_logger.addHandler(perf_handler)
            self.handlers.setdefault(PERFORMANCE_LOGGER, []).append(perf_handler)
            self.loggers[PERFORMANCE_LOGGER] = perf_logger

    def _add_root_handler(self, handler: logging.Handler):
        logging.getLogger().addHandler(handler)
        self._root_handlers.append(handler)

    def _level(self, key: str, default: str = "INFO") -> int:
        return getattr(logging, str(self.config.get(key, default)).upper(), logging.INFO)

    def _create_console_handler(self) -> logging.Handler:
        """Create console handler with colored output"""
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self._level("console_level"))

        if self.config.get("colored_output"):
            formatter: logging.Formatter = colorlog.ColoredFormatter(
                "%(log_color)s" + self.config["format"],
                datefmt=self.config.get("date_format"),
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "red,bg_white",
                },
            )
        else:
            formatter = logging.Formatter(
                self.config["format"], datefmt=self.config.get("date_format")
            )

        console_handler.setFormatter(formatter)
        return console_handler

    def _create_file_handler(self, filename: str, level: int | None = None) -> logging.Handler:
        """Create rotating file handler"""
        file_path = self.log_dir / filename

        try:
            handler: logging.Handler = RotatingFileHandler(
                file_path,
                maxBytes=self.config["max_bytes"],
                backupCount=self.config["backup_count"],
            )
        except OSError:
            # Don't fail hard if the filesystem isn't writable
            handler = logging.StreamHandler(sys.stderr)

        handler.setLevel(level or self._level("file_level", "DEBUG"))

        if self.config.get("json_logs"):
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(
                logging.Formatter(self.config["format"], datefmt=self.config.get("date_format"))
            )

        return handler

    def _create_performance_handler(self) -> logging.Handler:
        """Create handler for performance metrics"""
        try:
            handler: logging.Handler = TimedRotatingFileHandler(
                self.log_dir / "performance.log",
                when="midnight",
                interval=1,
                backupCount=7,
            )
        except OSError:
            handler = logging.StreamHandler(sys.stderr)

        handler.setLevel(logging.INFO)
        handler.setFormatter(JsonFormatter())
        return handler

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create a named logger"""
        if name not in self.loggers:
            self.loggers[name] = logging.getLogger(name)
        return self.loggers[name]

    def log_performance(self, operation: str, duration: float, metadata: dict | None = None):
        """Write one JSON performance record"""
        perf_data = {
            "operation": operation,
            "duration_ms": round(duration * 1000, 3),
            "timestamp": datetime.now().isoformat(),
        }
        for key, value in (metadata or {}).items():
            # LogRecord attribute names cannot be passed as extra fields
            perf_data[f"meta_{key}" if key in _RESERVED_RECORD_KEYS else key] = value

        # JsonFormatter flattens the fields into the record
        self.get_logger(PERFORMANCE_LOGGER).info(
            f"{operation} {perf_data['duration_ms']}ms", extra=perf_data
        )

    def set_level(self, level: str, logger_name: str | None = None):
        """Set logging level for a specific logger or the root logger"""
        level_value = getattr(logging, level.upper())
        logging.getLogger(logger_name).setLevel(level_value)

    def cleanup(self):
        """Detach and close every handler this service installed"""
        root_logger = logging.getLogger()
        for handler in self._root_handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self._root_handlers.clear()

        for name, logger_handlers in self.handlers.items():
            logger = logging.getLogger(name)
            for handler in logger_handlers:
                logger.removeHandler(handler)
                handler.close()
        self.handlers.clear()
        self.loggers.clear()


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields passed via logger.info(..., extra={...})
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class PerformanceLogger:
    """
    Context manager for timing an operation

    Usage:
        with PerformanceLogger(logger, "resync"):
            ...
    """

    def __init__(self, logger: logging.Logger, operation: str, metadata: dict | None = None):
        self.logger = logger
        self.operation = operation
        self.metadata = metadata
        self.start_time: float | None = None
        self.duration: float | None = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time

        if exc_type:
            self.logger.error(
                f"Operation '{self.operation}' failed after {self.duration:.3f}s: {exc_val}"
            )
        else:
            self.logger.debug(f"Operation '{self.operation}' completed in {self.duration:.3f}s")
        log_performance(self.operation, self.duration, self.metadata)
        return False


# Global logger service instance
_logger_service: LoggerService | None = None


def setup_logging(config: dict | None = None) -> logging.Logger:
    """
    Setup logging configuration and return root logger

    Args:
        config: Optional overrides on top of Config.LOGGING / Config.FILES

    Returns:
        Configured root logger
    """
    global _logger_service

    if _logger_service is not None:
        return logging.getLogger()

    from config import config as app_config

    log_config = {
        "log_dir": str(app_config.FILES.get("log_dir", "./logs")),
        "log_level": app_config.LOGGING.get("level", "INFO"),
        "console_level": app_config.LOGGING.get("level", "INFO"),
        "max_bytes": app_config.LOGGING.get("max_bytes", 5 * 1024 * 1024),
        "backup_count": app_config.LOGGING.get("backup_count", 3),
        "format": app_config.LOGGING.get("format"),
        "date_format": app_config.LOGGING.get("date_format"),
        "console_output": app_config.LOGGING.get("console_output", True),
    }
    if config:
        log_config.update(config)

    _logger_service = LoggerService(log_config)
    app_config.set_logger(logging.getLogger("config"))
    return logging.getLogger()


def get_logger(name: str) -> logging.Logger:
    """Get a named logger"""
    if _logger_service is None:
        return logging.getLogger(name)
    return _logger_service.get_logger(name)


def log_performance(operation: str, duration: float, metadata: dict | None = None):
    """Log performance metrics (no-op until setup_logging ran)"""
    if _logger_service:
        _logger_service.log_performance(operation, duration, metadata)


def cleanup_logging():
    """Clean up logging resources"""
    global _logger_service

    if _logger_service:
        _logger_service.cleanup()
        _logger_service = None
