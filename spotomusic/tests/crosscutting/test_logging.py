import json
import logging
from unittest.mock import Mock

import pytest

from spotomusic.crosscutting.logging import (
    SecretMasker, StructuredFormatter, MaskingTextFormatter, CorrelationContext,
    setup_logging, get_logger, log_with_fields, log_run_start, log_run_complete,
    run_id_var, playlist_id_var, stage_var,
)


def _record(message: str = 'Test message', fields=None, exc_info=None) -> Mock:
    record = Mock()
    record.levelname = 'INFO'
    record.name = 'test_logger'
    record.getMessage.return_value = message
    record.module = 'test_module'
    record.funcName = 'test_function'
    record.lineno = 42
    record.exc_info = exc_info
    record.fields = fields
    return record


@pytest.fixture(autouse=True)
def _reset_correlation():
    tokens = [var.set(None) for var in (run_id_var, playlist_id_var, stage_var)]
    yield
    for var, token in zip((run_id_var, playlist_id_var, stage_var), tokens):
        var.reset(token)


class TestSecretMasker:
    """Tests for secret masking functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.masker = SecretMasker()

    def test_mask_api_token(self):
        masked = self.masker.mask_secrets("API token: abc123def456ghi789")

        assert masked == "API token: abc1**********i789"

    def test_mask_google_access_token(self):
        token = "ya29.a0AfB_byC1234567890abcdefghijklmnopqrstuvwxyz"
        masked = self.masker.mask_secrets(f"access_token={token}")

        assert token not in masked
        assert masked.endswith("wxyz")

    def test_mask_refresh_token(self):
        token = "1//0gAbCdEfGhIjKlMnOpQrStUvWxYz0123456789"
        masked = self.masker.mask_secrets(f"refresh_token: {token}")

        assert token not in masked

    def test_mask_client_secret(self):
        masked = self.masker.mask_secrets("client_secret: GOCSPX-abcdefghijklmnop1234")

        assert masked.startswith("client_secret: GOCS")
        assert masked.endswith("1234")
        assert "GOCSPX-abcdefghijklmnop1234" not in masked

    def test_mask_oauth_code(self):
        code = "4/0AX4XfWhabcdefghijklmnopqrstuvwxyz"
        masked = self.masker.mask_secrets(f"code={code}")

        assert code not in masked

    def test_mask_dict(self):
        data = {
            'message': 'token: abcdefghijklmnop',
            'nested': {'detail': 'client_secret: abcdefghijklmnopqrstuv'},
            'items': ['key: 0123456789abcdef', 3],
            'count': 5,
        }

        masked = self.masker.mask_dict(data)

        assert 'abcdefghijklmnop' not in masked['message']
        assert 'abcdefghijklmnopqrstuv' not in masked['nested']['detail']
        assert '0123456789abcdef' not in masked['items'][0]
        assert masked['items'][1] == 3
        assert masked['count'] == 5

    def test_no_secrets_in_text(self):
        text = "Transferring playlist: Road Trip (12 tracks)"
        assert self.masker.mask_secrets(text) == text

    def test_empty_text(self):
        assert self.masker.mask_secrets("") == ""
        assert self.masker.mask_dict({}) == {}

    def test_short_secret(self):
        assert self.masker.mask_secrets("token: abc123") == "token: abc123"


class TestStructuredFormatter:
    """Tests for structured logging formatter."""

    def setup_method(self):
        """Set up test fixtures."""
        self.formatter = StructuredFormatter()

    def test_format_basic_log(self):
        data = json.loads(self.formatter.format(_record()))

        assert data['level'] == 'INFO'
        assert data['logger'] == 'test_logger'
        assert data['message'] == 'Test message'
        assert data['function'] == 'test_function'
        assert data['line'] == 42
        assert data['ts'].endswith('Z')
        assert 'runId' not in data

    def test_format_with_correlation(self):
        with CorrelationContext(run_id='run_1', playlist_id='abc123', stage='transferring'):
            data = json.loads(self.formatter.format(_record()))

        assert data['runId'] == 'run_1'
        assert data['playlistId'] == 'abc123'
        assert data['stage'] == 'transferring'

    def test_format_with_secrets(self):
        data = json.loads(self.formatter.format(_record('API token: secret123456')))

        assert data['message'] == 'API token: secr****3456'

    def test_format_with_fields(self):
        data = json.loads(self.formatter.format(_record(fields={'playlist_count': 2, 'dry_run': True})))

        assert data['fields'] == {'playlist_count': 2, 'dry_run': True}

    def test_format_with_exception(self):
        try:
            raise ValueError("Test error")
        except ValueError as e:
            record = _record('Error occurred', exc_info=(ValueError, e, e.__traceback__))

        data = json.loads(self.formatter.format(record))

        assert 'ValueError' in data['exception']
        assert 'Test error' in data['exception']


def test_text_formatter_masks_rendered_line():
    formatter = MaskingTextFormatter('%(message)s')
    record = logging.LogRecord('spotomusic', logging.INFO, __file__, 1,
                               'client_secret=%s', ('abcdefghijklmnopqrstuvwx',), None)

    assert 'abcdefghijklmnopqrstuvwx' not in formatter.format(record)


class TestCorrelationContext:
    """Tests for correlation context management."""

    def test_correlation_context_basic(self):
        with CorrelationContext(run_id='run', playlist_id='pl'):
            assert run_id_var.get() == 'run'
            assert playlist_id_var.get() == 'pl'

        assert run_id_var.get() is None
        assert playlist_id_var.get() is None

    def test_correlation_context_nested(self):
        with CorrelationContext(run_id='outer'):
            with CorrelationContext(playlist_id='inner', stage='init'):
                assert run_id_var.get() == 'outer'
                assert playlist_id_var.get() == 'inner'

            assert run_id_var.get() == 'outer'
            assert playlist_id_var.get() is None
            assert stage_var.get() is None

    def test_stage_changes_inside_context_are_undone(self):
        with CorrelationContext(playlist_id='pl', stage='init'):
            stage_var.set('done')

        assert stage_var.get() is None


class TestLoggingIntegration:
    """Integration tests for logging functionality."""

    def teardown_method(self):
        """Clean up test fixtures."""
        logger = logging.getLogger('spotomusic')
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()

    def test_setup_logging_structured_file(self, tmp_path):
        log_file = tmp_path / 'logs' / 'spotomusic.log'

        logger = setup_logging(level='DEBUG', log_file=str(log_file), structured=True, run_id='run_42')

        assert logger.name == 'spotomusic'
        assert logger.level == logging.DEBUG
        get_logger('spotomusic.application.pipeline').info('Test message')

        line = log_file.read_text().strip().splitlines()[-1]
        data = json.loads(line)
        assert data['message'] == 'Test message'
        assert data['runId'] == 'run_42'
        assert data['logger'] == 'spotomusic.application.pipeline'

    def test_setup_logging_text_format(self, tmp_path):
        log_file = tmp_path / 'text.log'

        logger = setup_logging(level='INFO', log_file=str(log_file))
        logger.debug('hidden')
        logger.info('visible')

        content = log_file.read_text()
        assert ' - spotomusic - INFO - visible' in content
        assert 'hidden' not in content

    def test_setup_logging_without_file(self):
        logger = setup_logging(level='WARNING')

        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING

    def test_run_helpers_emit_fields(self, tmp_path):
        log_file = tmp_path / 'run.log'
        logger = setup_logging(level='INFO', log_file=str(log_file), structured=True)

        log_run_start(logger, 'run_1', playlist_count=2, dry_run=True)
        log_run_complete(logger, 'run_1', total_playlists=2, total_tracks=10, matched=9)
        log_with_fields(logger, 'INFO', 'Custom', {'a': 1}, b=2)

        records = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert records[0]['message'] == 'Run started'
        assert records[0]['stage'] == 'start'
        assert records[0]['fields'] == {'playlist_count': 2, 'dry_run': True}
        assert records[1]['fields']['matched'] == 9
        assert records[1]['runId'] == 'run_1'
        assert records[2]['fields'] == {'a': 1, 'b': 2}
