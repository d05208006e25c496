from unittest.mock import Mock

import pytest
import requests

from spotomusic.domain.errors import FetchError
from spotomusic.infrastructure.providers.spotify_web import (
    BROWSER_HEADERS, SpotifyWebSource, parse_playlist_id, playlists_from_links,
)


class TestParsePlaylistId:
    """Tests for playlist reference parsing."""

    @pytest.mark.parametrize("link, expected", [
        ("https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M", "37i9dQZF1DXcBWIGoYBM5M"),
        ("https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M?si=abc123", "37i9dQZF1DXcBWIGoYBM5M"),
        ("spotify:playlist:37i9dQZF1DXcBWIGoYBM5M", "37i9dQZF1DXcBWIGoYBM5M"),
        ("  37i9dQZF1DXcBWIGoYBM5M ", "37i9dQZF1DXcBWIGoYBM5M"),
    ])
    def test_supported_formats(self, link, expected):
        assert parse_playlist_id(link) == expected

    @pytest.mark.parametrize("link", [
        "",
        "https://open.spotify.com/album/37i9dQZF1DXcBWIGoYBM5M",
        "https://example.com/playlist",
        "https://open.spotify.com/playlist/",
    ])
    def test_unsupported_formats(self, link):
        with pytest.raises(ValueError):
            parse_playlist_id(link)

    def test_playlists_from_links_skips_invalid(self):
        ids = playlists_from_links([
            "https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M",
            "not a link",
            "spotify:playlist:0vvXsWCC9xrXsKd4FyS8kM",
        ])

        assert ids == ["37i9dQZF1DXcBWIGoYBM5M", "0vvXsWCC9xrXsKd4FyS8kM"]


class TestSpotifyWebSource:
    """Tests for the playlist page source."""

    def setup_method(self):
        """Set up test fixtures."""
        self.session = Mock()
        self.source = SpotifyWebSource(session=self.session, timeout=5)

    def test_fetch_markup_uses_embed_url_and_browser_headers(self):
        self.session.get.return_value = Mock(status_code=200, content=b"<html>ok</html>")

        body = self.source.fetch_markup("abc123")

        assert body == b"<html>ok</html>"
        self.session.get.assert_called_once_with(
            "https://open.spotify.com/embed/playlist/abc123", headers=BROWSER_HEADERS, timeout=5
        )
        assert "Chrome/120" in BROWSER_HEADERS["User-Agent"]

    def test_non_200_raises_fetch_error(self):
        self.session.get.return_value = Mock(status_code=404, content=b"")

        with pytest.raises(FetchError) as exc_info:
            self.source.fetch_markup("abc123")

        assert exc_info.value.status_code == 404
        assert "HTTP 404" in str(exc_info.value)

    def test_transport_error_raises_fetch_error(self):
        self.session.get.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(FetchError):
            self.source.fetch_markup("abc123")

    def test_save_markup_writes_full_page(self, tmp_path):
        self.session.get.return_value = Mock(status_code=200, content=b"<html>page</html>")
        target = tmp_path / "debug.html"

        path = self.source.save_markup("abc123", str(target))

        assert path == target
        assert target.read_bytes() == b"<html>page</html>"
        assert self.session.get.call_args.args[0] == "https://open.spotify.com/playlist/abc123"
