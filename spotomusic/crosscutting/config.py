import os
import json
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional
from pathlib import Path

from dotenv import dotenv_values


class ConfigError(Exception):
    """Configuration error."""
    pass


DEFAULT_CONFIG_DIR = Path.home() / '.spotomusic'
DEFAULT_CREDENTIALS_FILE = Path.home() / '.spotomusic_youtube_credentials.json'
DEFAULT_TOKEN_FILE = Path.home() / '.spotomusic_youtube_token.json'
DEFAULT_OAUTH_PORT = 8081
DEFAULT_TRACK_DELAY_MS = 100
DEFAULT_SEARCH_LIMIT = 5
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}


def _parse_bool(value: Optional[str]) -> bool:
    return (value or '').strip().lower() in _TRUE_VALUES


def _parse_int(env: Mapping[str, Optional[str]], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {value}")
    return value


@dataclass
class Settings:
    """Resolved runtime configuration."""

    config_dir: Path = DEFAULT_CONFIG_DIR
    credentials_file: Path = DEFAULT_CREDENTIALS_FILE
    credentials_json: str = ''
    token_file: Path = DEFAULT_TOKEN_FILE
    playlist_links_raw: str = ''
    dry_run: bool = False
    verbose: bool = False
    log_level: str = 'INFO'
    track_delay_ms: int = DEFAULT_TRACK_DELAY_MS
    search_limit: int = DEFAULT_SEARCH_LIMIT
    oauth_port: int = DEFAULT_OAUTH_PORT
    report_dir: Optional[Path] = None

    @property
    def effective_log_level(self) -> str:
        return 'DEBUG' if self.verbose else self.log_level

    @property
    def log_file(self) -> Path:
        return self.config_dir / 'logs' / 'spotomusic.log'

    @property
    def track_delay_sec(self) -> float:
        return self.track_delay_ms / 1000.0

    def playlist_links(self) -> List[str]:
        """Get configured playlist links, split on commas and trimmed."""
        return [link.strip() for link in self.playlist_links_raw.split(',') if link.strip()]

    def validate_destination(self) -> Path:
        """Make sure OAuth client credentials are available.

        Inline ``YOUTUBE_CREDENTIALS_JSON`` is written to the credentials file
        first (owner-only permissions).

        Returns:
            Path of the client credentials file

        Raises:
            ConfigError: If no credentials are available
        """
        if self.credentials_json:
            try:
                json.loads(self.credentials_json)
            except ValueError as e:
                raise ConfigError(f"YOUTUBE_CREDENTIALS_JSON is not valid JSON: {e}")
            try:
                self.credentials_file.parent.mkdir(parents=True, exist_ok=True)
                with open(self.credentials_file, 'w') as f:
                    f.write(self.credentials_json)
                os.chmod(self.credentials_file, 0o600)
            except OSError as e:
                raise ConfigError(f"Failed to save credentials to {self.credentials_file}: {e}")

        if not self.credentials_file.exists():
            raise ConfigError(
                f"YouTube credentials not found at {self.credentials_file}. "
                "Set YOUTUBE_CREDENTIALS_FILE or YOUTUBE_CREDENTIALS_JSON."
            )
        return self.credentials_file

    def summary(self) -> Dict[str, str]:
        """Get configuration summary (without sensitive data)."""
        return {
            'config_dir': str(self.config_dir),
            'credentials_file': str(self.credentials_file),
            'has_inline_credentials': str(bool(self.credentials_json)),
            'token_file': str(self.token_file),
            'playlist_links': str(len(self.playlist_links())),
            'dry_run': str(self.dry_run),
            'log_level': self.effective_log_level,
        }


def load_settings(env_file: Optional[str] = None,
                  environ: Optional[Mapping[str, str]] = None,
                  config_dir: Optional[Path] = None) -> Settings:
    """Load settings from defaults, dotenv files and the environment.

    Precedence, lowest first: defaults, ``<config_dir>/.env``, ``env_file``,
    the process environment.

    Args:
        env_file: Explicit dotenv file (``--config``)
        environ: Environment mapping, defaults to ``os.environ``
        config_dir: Directory holding the default ``.env`` and logs

    Raises:
        ConfigError: If the explicit file is missing or a value is malformed
    """
    config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
    environ = os.environ if environ is None else environ

    merged: Dict[str, Optional[str]] = {}
    default_env = config_dir / '.env'
    if default_env.exists():
        merged.update(dotenv_values(default_env))
    if env_file:
        if not Path(env_file).exists():
            raise ConfigError(f"Config file not found: {env_file}")
        merged.update(dotenv_values(env_file))
    merged.update(environ)

    def get(key: str, default: str = '') -> str:
        value = merged.get(key)
        return default if value is None else value

    report_dir = get('SPOTOMUSIC_REPORT_DIR')
    log_level = get('SPOTOMUSIC_LOG_LEVEL', 'INFO').upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"SPOTOMUSIC_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

    return Settings(
        config_dir=config_dir,
        credentials_file=Path(get('YOUTUBE_CREDENTIALS_FILE') or DEFAULT_CREDENTIALS_FILE).expanduser(),
        credentials_json=get('YOUTUBE_CREDENTIALS_JSON').strip(),
        token_file=Path(get('YOUTUBE_TOKEN_FILE') or DEFAULT_TOKEN_FILE).expanduser(),
        playlist_links_raw=get('SPOTIFY_PLAYLIST_LINKS'),
        dry_run=_parse_bool(get('SPOTOMUSIC_DRY_RUN')),
        verbose=_parse_bool(get('SPOTOMUSIC_VERBOSE')),
        log_level=log_level,
        track_delay_ms=_parse_int(merged, 'SPOTOMUSIC_TRACK_DELAY_MS', DEFAULT_TRACK_DELAY_MS),
        search_limit=_parse_int(merged, 'SPOTOMUSIC_SEARCH_LIMIT', DEFAULT_SEARCH_LIMIT),
        oauth_port=_parse_int(merged, 'SPOTOMUSIC_OAUTH_PORT', DEFAULT_OAUTH_PORT),
        report_dir=Path(report_dir).expanduser() if report_dir else None,
    )
