import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Optional

from spotomusic.domain.errors import AuthorizationError


class AuthorizationHandoff:
    """One-shot channel carrying the OAuth authorization code.

    The callback handler is the only producer and the authorization flow the
    only consumer. The first delivery wins; later ones are ignored.
    """

    def __init__(self):
        self._future: Future = Future()
        self._lock = threading.Lock()

    def deliver(self, code: str) -> bool:
        """Hand over the authorization code. Returns False if already settled."""
        with self._lock:
            if self._future.done():
                return False
            self._future.set_result(code)
            return True

    def fail(self, error: Exception) -> bool:
        """Hand over a failure. Returns False if already settled."""
        with self._lock:
            if self._future.done():
                return False
            self._future.set_exception(error)
            return True

    @property
    def settled(self) -> bool:
        return self._future.done()

    def wait(self, timeout: Optional[float] = None) -> str:
        """Block until the code arrives.

        Raises:
            AuthorizationError: On timeout or when the callback reported a failure
        """
        try:
            return self._future.result(timeout=timeout)
        except FutureTimeoutError:
            raise AuthorizationError(f"no authorization callback received within {timeout} seconds")
        except AuthorizationError:
            raise
        except Exception as e:
            raise AuthorizationError(f"authorization failed: {e}")
