"""
Logging Configuration Module

Provides centralized logging configuration with file and console handlers,
and the ``log_print`` decorator used on service-layer methods.
"""

import functools
import inspect
import json
import logging
import os
from datetime import datetime, date
from decimal import Decimal
from logging.handlers import TimedRotatingFileHandler

from .settings import LogConfig

# Define log format strings
FILE_FORMATTER = '%(asctime)s.%(msecs)03d | %(levelname)-7s | [PID:%(process)d/TID:%(thread)d] | %(filename)s.%(funcName)s:%(lineno)d | %(message)s'
CONSOLE_FORMATTER = '%(asctime)s.%(msecs)03d | \033[1m%(levelname)-7s\033[0m | [PID:%(process)d/TID:%(thread)d] | %(filename)s.%(funcName)s:%(lineno)d | \033[36m%(message)s\033[0m'

# Argument names whose values never reach the log files
SENSITIVE_PARAMS = frozenset({
    "access_token",
    "refresh_token",
    "token",
    "client_secret",
    "code",
    "content",
    "credential",
})

MASK = "***"


class LoggingConfig:
    """Logging configuration management"""

    def __init__(self, log_file_name=None, log_level=None, backup_count=None, log_dir=None):
        self.log_file_name = log_file_name or LogConfig.FILE_NAME
        self.log_level = log_level or logging.getLevelName(str(LogConfig.LEVEL).upper())
        self.backup_count = backup_count or LogConfig.BACKUP_COUNT
        self.log_dir = log_dir or LogConfig.DIR
        self.logger = logging.getLogger()

    def setup_logging(self):
        """Setup logging with file and console handlers"""
        # Clear existing handlers to avoid duplicates
        self.logger.handlers.clear()
        self.logger.setLevel(self.log_level)

        if self.log_dir is None:
            root_dir = os.path.dirname(os.path.abspath(__file__))
            self.log_dir = os.path.join(root_dir, "../../logs")

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMATTER))
        self.logger.addHandler(console_handler)

        try:
            os.makedirs(self.log_dir, exist_ok=True)
        except OSError as e:
            self.logger.error(f"Failed to create log directory {self.log_dir}, logging to console only: {e}")
            return self.logger

        # Daily rotation
        file_handler = TimedRotatingFileHandler(
            os.path.join(self.log_dir, f'{self.log_file_name}.log'),
            when='D',
            interval=1,
            backupCount=self.backup_count,
            encoding='utf-8',
        )
        file_handler.setFormatter(logging.Formatter(FILE_FORMATTER))
        self.logger.addHandler(file_handler)

        # Chatty at INFO; request lines are already logged by uvicorn
        logging.getLogger("httpx").setLevel(logging.WARNING)

        self.logger.info(f"Logging initialized at level {logging.getLevelName(self.log_level)}")
        return self.logger


class _SafeEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if isinstance(o, Decimal):
            return float(o)
        if hasattr(o, 'model_dump') and callable(o.model_dump):
            return o.model_dump()
        if hasattr(o, '__dataclass_fields__'):
            return {k: getattr(o, k) for k in o.__dataclass_fields__}
        return f"<{type(o).__name__}>"


def _safe_to_json(obj, max_length=500):
    """Render a value for the log line, truncated to ``max_length``."""
    try:
        if obj is None or isinstance(obj, (bool, int, float, str)):
            result = str(obj)
            return result if len(result) <= max_length else result[:max_length] + "..."

        if isinstance(obj, bytes):
            return f"bytes(len={len(obj)})"

        json_str = json.dumps(obj, cls=_SafeEncoder, ensure_ascii=False)
        if len(json_str) > max_length:
            return json_str[:max_length] + "... (truncated)"
        return json_str
    except (TypeError, ValueError):
        result = repr(obj)
        return result[:max_length] + "..." if len(result) > max_length else result


def _format_value(name, value):
    if name in SENSITIVE_PARAMS and value is not None:
        return MASK
    return _safe_to_json(value, max_length=200)


def log_print(func):
    """Decorator for logging function calls and return values (supports sync/async)"""

    # Resolve the parameter names once at decoration time
    try:
        param_names = list(inspect.signature(func).parameters.keys())
    except (TypeError, ValueError):
        param_names = []

    skip_first = bool(param_names) and param_names[0] in ("self", "cls")

    def _describe_args(args, kwargs):
        params = []
        start_idx = 1 if skip_first and args else 0
        for param_idx, arg in enumerate(args[start_idx:], start=start_idx):
            name = param_names[param_idx] if param_idx < len(param_names) else None
            rendered = _format_value(name, arg)
            params.append(f"{name}={rendered}" if name else rendered)
        params.extend(f"{k}={_format_value(k, v)}" for k, v in kwargs.items())
        return ', '.join(params) if params else '(no args)'

    @functools.wraps(func)
    async def async_wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__)
        logger.info(f"[Call] {func.__qualname__} ←------------ Args: {_describe_args(args, kwargs)}")
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.warning(f"[Exception] {func.__qualname__} ! {e.__class__.__name__}: {e}")
            raise
        logger.info(f"[Return] {func.__qualname__} ------------→ Result: {_safe_to_json(result)}")
        return result

    @functools.wraps(func)
    def sync_wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__)
        logger.info(f"[Call] {func.__qualname__} ←------------ Args: {_describe_args(args, kwargs)}")
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.warning(f"[Exception] {func.__qualname__} ! {e.__class__.__name__}: {e}")
            raise
        logger.info(f"[Return] {func.__qualname__} ------------→ Result: {_safe_to_json(result)}")
        return result

    return async_wrapper if inspect.iscoroutinefunction(func) else sync_wrapper
