import os
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from spotomusic.domain.errors import AuthorizationError
from spotomusic.infrastructure.auth.handoff import AuthorizationHandoff
from spotomusic.interfaces.http import CallbackServer


logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/youtube']
DEFAULT_AUTH_TIMEOUT_SEC = 300


class YouTubeAuthenticator:
    """Obtains and persists OAuth credentials for the YouTube Data API."""

    def __init__(self,
                 client_secrets_file: Path,
                 token_file: Path,
                 host: str = 'localhost',
                 port: int = 8081,
                 timeout_sec: float = DEFAULT_AUTH_TIMEOUT_SEC,
                 prompt: Callable[[str], None] = print):
        """Initialize authenticator.

        Args:
            client_secrets_file: OAuth client configuration downloaded from Google Cloud
            token_file: Where authorized user credentials are stored
            host: Callback server host
            port: Callback server port
            timeout_sec: How long to wait for the browser redirect
            prompt: Shows the authorization URL to the user
        """
        self.client_secrets_file = Path(client_secrets_file)
        self.token_file = Path(token_file)
        self.host = host
        self.port = port
        self.timeout_sec = timeout_sec
        self._prompt = prompt

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}/"

    def load_credentials(self) -> Optional[Credentials]:
        """Load stored credentials, None when absent or unreadable."""
        if not self.token_file.exists():
            return None
        try:
            return Credentials.from_authorized_user_file(str(self.token_file), SCOPES)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable token file {self.token_file}: {e}")
            return None

    def save_credentials(self, credentials: Credentials) -> None:
        """Persist credentials readable by the owner only."""
        try:
            self.token_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.token_file, 'w') as f:
                f.write(credentials.to_json())
            os.chmod(self.token_file, 0o600)
        except OSError as e:
            logger.warning(f"YouTube token could not be saved: {e}")

    def get_credentials(self) -> Credentials:
        """Return valid credentials, refreshing or authorizing as needed.

        Raises:
            AuthorizationError: If no valid credentials could be obtained
        """
        credentials = self.load_credentials()
        if credentials is not None and credentials.valid:
            return credentials

        if credentials is not None and credentials.expired and credentials.refresh_token:
            try:
                credentials.refresh(Request())
            except RefreshError as e:
                logger.warning(f"Token refresh failed, authorization required: {e}")
            else:
                logger.info("Refreshed YouTube access token")
                self.save_credentials(credentials)
                return credentials

        credentials = self.authorize()
        self.save_credentials(credentials)
        return credentials

    def _create_flow(self) -> Flow:
        if not self.client_secrets_file.exists():
            raise AuthorizationError(f"client secrets file not found: {self.client_secrets_file}")
        try:
            return Flow.from_client_secrets_file(
                str(self.client_secrets_file), scopes=SCOPES, redirect_uri=self.redirect_uri
            )
        except ValueError as e:
            raise AuthorizationError(f"invalid client secrets file: {e}")

    def authorize(self) -> Credentials:
        """Run the browser authorization flow with a local callback server.

        Raises:
            AuthorizationError: On denial, timeout or a failed token exchange
        """
        flow = self._create_flow()
        auth_url, state = flow.authorization_url(access_type='offline', prompt='consent')

        handoff = AuthorizationHandoff()
        server = CallbackServer(handoff, self.host, self.port, expected_state=state)
        server.start()
        try:
            self._prompt(f"Open the following URL in your browser to authorize access:\n{auth_url}\n")
            code = handoff.wait(self.timeout_sec)
        finally:
            server.shutdown()

        try:
            flow.fetch_token(code=code)
        except Exception as e:
            raise AuthorizationError(f"token exchange failed: {e}")

        logger.info("YouTube authorization completed")
        return flow.credentials

    def build_service(self) -> Any:
        """Build an authorized YouTube Data API v3 resource."""
        return build('youtube', 'v3', credentials=self.get_credentials(), cache_discovery=False)
