import logging
import threading
from datetime import datetime
from typing import Optional

from flask import Flask, request, jsonify
from werkzeug.serving import make_server

from spotomusic.domain.errors import AuthorizationError
from spotomusic.infrastructure.auth.handoff import AuthorizationHandoff


SUCCESS_PAGE = (
    "<html><body><h1>Authorization successful</h1>"
    "<p>You can close this window and return to the terminal.</p></body></html>"
)


class CallbackServer:
    """Local HTTP server receiving the OAuth redirect for one authorization attempt."""

    def __init__(self,
                 handoff: AuthorizationHandoff,
                 host: str = 'localhost',
                 port: int = 8081,
                 expected_state: Optional[str] = None):
        """Initialize callback server.

        Args:
            handoff: Channel the received code is delivered through
            host: Interface to bind
            port: Port to bind, must match the registered redirect URI
            expected_state: OAuth ``state`` the redirect must carry
        """
        self.handoff = handoff
        self.host = host
        self.port = port
        self.expected_state = expected_state
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)
        self._server = None
        self._thread: Optional[threading.Thread] = None

        self._setup_routes()

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'waiting': not self.handoff.settled,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/', methods=['GET'])
        @self.app.route('/callback', methods=['GET'])
        def oauth_callback():
            """OAuth redirect endpoint."""
            code = request.args.get('code')
            error = request.args.get('error')
            state = request.args.get('state')

            if error:
                self.logger.error(f"OAuth error: {error}")
                self.handoff.fail(AuthorizationError(f"authorization denied: {error}"))
                return jsonify({
                    'error': 'OAuth authorization failed',
                    'details': error
                }), 400

            if not code:
                return jsonify({
                    'error': 'Missing authorization code'
                }), 400

            if self.expected_state is not None and state != self.expected_state:
                self.logger.error("OAuth state mismatch in callback")
                self.handoff.fail(AuthorizationError("authorization state mismatch"))
                return jsonify({
                    'error': 'State mismatch'
                }), 400

            if not self.handoff.deliver(code):
                self.logger.warning("Ignoring repeated OAuth callback")
                return jsonify({
                    'error': 'Authorization already completed'
                }), 409

            self.logger.info("Received OAuth authorization code")
            return SUCCESS_PAGE, 200, {'Content-Type': 'text/html; charset=utf-8'}

    def start(self) -> None:
        """Start serving in a background thread.

        Raises:
            AuthorizationError: If the port cannot be bound
        """
        try:
            self._server = make_server(self.host, self.port, self.app)
        except OSError as e:
            raise AuthorizationError(f"cannot start callback server on {self.host}:{self.port}: {e}")

        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        self.logger.debug(f"OAuth callback server listening on {self.host}:{self.port}")

    def shutdown(self) -> None:
        """Stop the background server if it is running."""
        if self._server is None:
            return
        self._server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None


def create_callback_app(handoff: AuthorizationHandoff, expected_state: Optional[str] = None) -> Flask:
    """Create Flask app for testing."""
    return CallbackServer(handoff, expected_state=expected_state).app
