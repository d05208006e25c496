import json
import os
import stat
from pathlib import Path

import pytest

from spotomusic.crosscutting.config import (
    ConfigError, Settings, load_settings,
    DEFAULT_CREDENTIALS_FILE, DEFAULT_TOKEN_FILE,
)


class TestLoadSettings:
    """Tests for settings loading and precedence."""

    def setup_method(self):
        """Set up test fixtures."""
        self.environ = {}

    def test_defaults(self, tmp_path):
        settings = load_settings(environ=self.environ, config_dir=tmp_path)

        assert settings.credentials_file == DEFAULT_CREDENTIALS_FILE
        assert settings.token_file == DEFAULT_TOKEN_FILE
        assert settings.oauth_port == 8081
        assert settings.track_delay_ms == 100
        assert settings.track_delay_sec == 0.1
        assert settings.search_limit == 5
        assert settings.dry_run is False
        assert settings.report_dir is None
        assert settings.log_file == tmp_path / 'logs' / 'spotomusic.log'
        assert settings.playlist_links() == []

    def test_precedence(self, tmp_path):
        (tmp_path / '.env').write_text(
            "SPOTOMUSIC_SEARCH_LIMIT=7\nSPOTOMUSIC_OAUTH_PORT=9000\nSPOTOMUSIC_TRACK_DELAY_MS=50\n"
        )
        explicit = tmp_path / 'custom.env'
        explicit.write_text("SPOTOMUSIC_OAUTH_PORT=9100\nSPOTOMUSIC_TRACK_DELAY_MS=25\n")
        self.environ['SPOTOMUSIC_TRACK_DELAY_MS'] = '0'

        settings = load_settings(str(explicit), environ=self.environ, config_dir=tmp_path)

        assert settings.search_limit == 7      # default .env
        assert settings.oauth_port == 9100     # explicit file beats default .env
        assert settings.track_delay_ms == 0    # process environment beats both

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match='Config file not found'):
            load_settings(str(tmp_path / 'missing.env'), environ=self.environ, config_dir=tmp_path)

    def test_flags_and_paths(self, tmp_path):
        self.environ.update({
            'SPOTOMUSIC_DRY_RUN': 'true',
            'SPOTOMUSIC_VERBOSE': '1',
            'SPOTOMUSIC_LOG_LEVEL': 'warning',
            'SPOTOMUSIC_REPORT_DIR': str(tmp_path / 'reports'),
            'YOUTUBE_CREDENTIALS_FILE': str(tmp_path / 'creds.json'),
            'YOUTUBE_TOKEN_FILE': str(tmp_path / 'token.json'),
        })

        settings = load_settings(environ=self.environ, config_dir=tmp_path)

        assert settings.dry_run is True
        assert settings.verbose is True
        assert settings.log_level == 'WARNING'
        assert settings.effective_log_level == 'DEBUG'
        assert settings.report_dir == tmp_path / 'reports'
        assert settings.credentials_file == tmp_path / 'creds.json'
        assert settings.token_file == tmp_path / 'token.json'

    @pytest.mark.parametrize('key, value', [
        ('SPOTOMUSIC_TRACK_DELAY_MS', 'fast'),
        ('SPOTOMUSIC_SEARCH_LIMIT', '-1'),
        ('SPOTOMUSIC_OAUTH_PORT', '80.5'),
        ('SPOTOMUSIC_LOG_LEVEL', 'LOUD'),
    ])
    def test_malformed_values(self, tmp_path, key, value):
        self.environ[key] = value

        with pytest.raises(ConfigError, match=key):
            load_settings(environ=self.environ, config_dir=tmp_path)

    def test_playlist_links_are_split_and_trimmed(self, tmp_path):
        self.environ['SPOTIFY_PLAYLIST_LINKS'] = ' https://open.spotify.com/playlist/a ,, spotify:playlist:b '

        settings = load_settings(environ=self.environ, config_dir=tmp_path)

        assert settings.playlist_links() == ['https://open.spotify.com/playlist/a', 'spotify:playlist:b']


class TestValidateDestination:
    """Tests for destination credential checks."""

    def test_missing_credentials(self, tmp_path):
        settings = Settings(credentials_file=tmp_path / 'missing.json')

        with pytest.raises(ConfigError, match='YouTube credentials not found'):
            settings.validate_destination()

    def test_existing_credentials_file(self, tmp_path):
        creds = tmp_path / 'creds.json'
        creds.write_text('{}')

        assert Settings(credentials_file=creds).validate_destination() == creds

    def test_inline_credentials_are_written_owner_only(self, tmp_path):
        creds = tmp_path / 'creds.json'
        inline = json.dumps({'installed': {'client_id': 'x'}})
        settings = Settings(credentials_file=creds, credentials_json=inline)

        path = settings.validate_destination()

        assert path == creds
        assert json.loads(creds.read_text()) == {'installed': {'client_id': 'x'}}
        assert stat.S_IMODE(os.stat(creds).st_mode) == 0o600

    def test_invalid_inline_credentials(self, tmp_path):
        settings = Settings(credentials_file=tmp_path / 'creds.json', credentials_json='{not json')

        with pytest.raises(ConfigError, match='not valid JSON'):
            settings.validate_destination()

    def test_summary_has_no_secrets(self, tmp_path):
        settings = Settings(credentials_json='{"client_secret": "s3cr3t"}')

        summary = settings.summary()

        assert 's3cr3t' not in json.dumps(summary)
        assert summary['has_inline_credentials'] == 'True'
