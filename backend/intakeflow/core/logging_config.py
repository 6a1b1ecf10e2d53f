"""
Structured logging for the intake service

JSON lines carry the request context (request id, trace id) and, while a
pipeline run is in progress, its ``input_kind`` and ``correlation_id``.
Credentials are masked before anything is written.
"""
import json
import logging
import re
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from intakeflow.core.config import Settings, get_settings

request_context: ContextVar[Dict[str, Any]] = ContextVar('request_context', default={})

SENSITIVE_PATTERNS: List[Tuple[str, str]] = [
    (r'password["\']?\s*[:=]\s*["\']?([^"\'\s&]+)', r'password": "***"'),
    (r'token["\']?\s*[:=]\s*["\']?([^"\'\s&]+)', r'token": "***"'),
    (r'api[_-]?key["\']?\s*[:=]\s*["\']?([^"\'\s&]+)', r'api_key": "***"'),
    (r'secret["\']?\s*[:=]\s*["\']?([^"\'\s&]+)', r'secret": "***"'),
    (r'Bearer\s+([^\s"]+)', r'Bearer ***'),
    (r'Authorization:\s*([^\s"]+)', r'Authorization: ***'),
]

_COMPILED_PATTERNS = [(re.compile(p, re.IGNORECASE), r) for p, r in SENSITIVE_PATTERNS]

ROTATION_CHOICES = ('midnight', 'W0', 'W1', 'W2', 'W3', 'W4', 'W5', 'W6')

# Attributes every LogRecord has; anything else came in through extra=
_RESERVED_RECORD_KEYS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}


def mask_sensitive(text: str) -> str:
    """Mask credentials embedded in free text"""
    for pattern, replacement in _COMPILED_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SensitiveDataFilter(logging.Filter):
    """Masks credentials in messages and string arguments"""

    def __init__(self, enabled: bool = True):
        super().__init__()
        self.enabled = enabled

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.enabled:
            return True
        if isinstance(record.msg, str):
            record.msg = mask_sensitive(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(mask_sensitive(a) if isinstance(a, str) else a for a in record.args)
        return True


class ContextualFormatter(logging.Formatter):
    """One JSON object per line: record fields, request/pipeline context, extra= fields"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
        }
        entry.update(request_context.get({}))

        for key, value in vars(record).items():
            if key not in _RESERVED_RECORD_KEYS:
                entry[key] = value

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def _module_levels(settings: Settings, overrides: Optional[Dict[str, str]]) -> Dict[str, str]:
    levels = {
        "sqlalchemy.engine": "INFO" if settings.log_sqlalchemy else "WARNING",
        "sqlalchemy.pool": "WARNING",
        "httpx": "WARNING",
        "httpcore": "WARNING",
        "uvicorn.access": "INFO" if settings.log_uvicorn_access else "WARNING",
        "uvicorn.error": "INFO",
        "intakeflow": settings.log_level,
    }
    if settings.log_module_levels:
        try:
            levels.update(json.loads(settings.log_module_levels))
        except (json.JSONDecodeError, TypeError):
            pass
    levels.update(overrides or {})
    return levels


def _log_file_path(settings: Settings) -> Path:
    path = Path(settings.log_file_path)
    if not path.is_absolute():
        # backend/intakeflow/core -> project root
        path = Path(__file__).resolve().parents[3] / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _build_handlers(settings: Settings) -> List[logging.Handler]:
    if settings.log_format.lower() == "json":
        formatter: logging.Formatter = ContextualFormatter(datefmt='%Y-%m-%d %H:%M:%S')
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s', datefmt='%Y-%m-%d %H:%M:%S'
        )

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file_enabled:
        rotation = settings.log_file_rotation if settings.log_file_rotation in ROTATION_CHOICES else 'midnight'
        handlers.append(TimedRotatingFileHandler(
            filename=str(_log_file_path(settings)),
            when=rotation,
            backupCount=settings.log_file_retention,
            encoding='utf-8',
        ))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(SensitiveDataFilter(enabled=not settings.log_sensitive_data))
    return handlers


class LoggingConfig:
    """Process-wide logging setup and the logging context helpers"""

    _configured = False

    @classmethod
    def configure(cls, module_levels: Optional[Dict[str, str]] = None):
        if cls._configured:
            return

        settings = get_settings()
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper()),
            handlers=_build_handlers(settings),
            force=True,
        )
        for module, level in _module_levels(settings, module_levels).items():
            module_logger = logging.getLogger(module)
            module_logger.setLevel(getattr(logging, level.upper()))
            if module.startswith(("sqlalchemy", "uvicorn")):
                module_logger.propagate = False

        cls._configured = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if not cls._configured:
            cls.configure()
        return logging.getLogger(name)

    @classmethod
    def set_context(cls, **kwargs):
        ctx = request_context.get({}).copy()
        ctx.update(kwargs)
        request_context.set(ctx)

    @classmethod
    def clear_context(cls):
        request_context.set({})

    @classmethod
    @contextmanager
    def scoped_context(cls, **kwargs) -> Iterator[None]:
        """Context fields that are dropped again when the block exits"""
        token = request_context.set({**request_context.get({}), **kwargs})
        try:
            yield
        finally:
            request_context.reset(token)


LoggingConfig.configure()
