import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Correlation data attached to structured records
run_id_var: ContextVar[Optional[str]] = ContextVar('run_id', default=None)
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)

_CORRELATION_FIELDS = (
    ('runId', run_id_var),
    ('playlistId', playlist_id_var),
    ('stage', stage_var),
)

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_LOG_FILE = Path.home() / '.spotomusic' / 'logs' / 'spotomusic.log'
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# (name prefix, minimum secret length, extra characters allowed in the secret)
_SECRET_RULES = (
    ('token|key|secret|password|auth', 10, ''),
    ('access_token|refresh_token', 20, '/'),
    ('client_secret', 20, ''),
    ('code|authorization_code', 20, '/'),
)
_VISIBLE_CHARS = 4


def _compile_rule(names: str, min_length: int, extra: str) -> 're.Pattern':
    charset = r'a-zA-Z0-9\-_\.' + re.escape(extra)
    return re.compile(rf'(?i)({names})\s*[:=]\s*["\']?([{charset}]{{{min_length},}})["\']?')


class SecretMasker:
    """Masks OAuth tokens, client secrets and authorization codes in log output.

    A matched secret keeps its first and last four characters; the key and the
    secret are re-rendered as ``key: xxxx****xxxx``.
    """

    def __init__(self):
        self.compiled_patterns = [_compile_rule(*rule) for rule in _SECRET_RULES]

    @staticmethod
    def _mask_match(match: 're.Match') -> str:
        secret = match.group(2)
        hidden = len(secret) - 2 * _VISIBLE_CHARS
        if hidden > 0:
            secret = secret[:_VISIBLE_CHARS] + '*' * hidden + secret[-_VISIBLE_CHARS:]
        else:
            secret = '*' * len(secret)
        return f"{match.group(1)}: {secret}"

    def mask_secrets(self, text: str) -> str:
        if not text:
            return text
        for pattern in self.compiled_patterns:
            text = pattern.sub(self._mask_match, text)
        return text

    def _mask_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.mask_secrets(value)
        if isinstance(value, dict):
            return self.mask_dict(value)
        if isinstance(value, list):
            return [self._mask_value(item) for item in value]
        return value

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask every string nested in ``data``; other values pass through."""
        if not data:
            return data
        return {key: self._mask_value(value) for key, value in data.items()}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with correlation ids and extra fields."""

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'ts': datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for key, var in _CORRELATION_FIELDS:
            value = var.get()
            if value:
                entry[key] = value

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        fields = getattr(record, 'fields', None)
        if fields:
            entry['fields'] = self.masker.mask_dict(fields)

        return json.dumps(entry, ensure_ascii=False)


class MaskingTextFormatter(logging.Formatter):
    """Plain text formatter that masks secrets in the rendered line."""

    def __init__(self, fmt: str = TEXT_FORMAT):
        super().__init__(fmt)
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        return self.masker.mask_secrets(super().format(record))


class CorrelationContext:
    """Context manager for correlation data."""

    def __init__(self, run_id: Optional[str] = None,
                 playlist_id: Optional[str] = None,
                 stage: Optional[str] = None):
        """Initialize correlation context."""
        self.run_id = run_id
        self.playlist_id = playlist_id
        self.stage = stage
        self._tokens = []

    def __enter__(self):
        """Set correlation context."""
        for var, value in ((run_id_var, self.run_id),
                           (playlist_id_var, self.playlist_id),
                           (stage_var, self.stage)):
            if value is not None:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Restore correlation context."""
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None,
                  structured: bool = False,
                  run_id: Optional[str] = None) -> logging.Logger:
    """Configure the ``spotomusic`` logger hierarchy.

    Console output always; a rotating file handler when ``log_file`` is given
    and its directory can be created.
    """
    logger = logging.getLogger('spotomusic')
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()
    logger.propagate = False

    formatter = StructuredFormatter() if structured else MaskingTextFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)
        except OSError as e:
            logger.warning(f"Log file could not be opened, using console only: {e}")
        else:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    if run_id:
        run_id_var.set(run_id)

    return logger


def get_logger(name: str = 'spotomusic') -> logging.Logger:
    """Get logger with structured formatting."""
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None, **kwargs):
    """Log message with additional fields."""
    record = logger.makeRecord(
        logger.name, getattr(logging, level.upper()),
        '', 0, message, (), None
    )

    record.fields = dict(fields or {})
    record.fields.update(kwargs)

    logger.handle(record)


def log_run_start(logger: logging.Logger, run_id: str, playlist_count: int, dry_run: bool):
    """Log start of a CLI run."""
    with CorrelationContext(run_id=run_id, stage='start'):
        log_with_fields(logger, 'INFO', 'Run started', {
            'playlist_count': playlist_count,
            'dry_run': dry_run,
        })


def log_run_complete(logger: logging.Logger, run_id: str, total_playlists: int,
                     total_tracks: int, **kwargs):
    """Log completion of a CLI run."""
    with CorrelationContext(run_id=run_id, stage='complete'):
        log_with_fields(logger, 'INFO', 'Run completed', {
            'total_playlists': total_playlists,
            'total_tracks': total_tracks,
            **kwargs
        })
