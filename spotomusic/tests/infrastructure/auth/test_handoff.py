import threading

import pytest

from spotomusic.domain.errors import AuthorizationError
from spotomusic.infrastructure.auth.handoff import AuthorizationHandoff


class TestAuthorizationHandoff:
    """Tests for the one-shot authorization code channel."""

    def test_deliver_then_wait(self):
        handoff = AuthorizationHandoff()

        assert handoff.deliver("code-1")
        assert handoff.wait(timeout=1) == "code-1"
        assert handoff.settled

    def test_second_delivery_is_ignored(self):
        handoff = AuthorizationHandoff()
        handoff.deliver("first")

        assert not handoff.deliver("second")
        assert not handoff.fail(AuthorizationError("late"))
        assert handoff.wait(timeout=1) == "first"

    def test_failure_is_raised_to_consumer(self):
        handoff = AuthorizationHandoff()
        handoff.fail(AuthorizationError("access_denied"))

        with pytest.raises(AuthorizationError, match="access_denied"):
            handoff.wait(timeout=1)

    def test_other_failures_are_wrapped(self):
        handoff = AuthorizationHandoff()
        handoff.fail(RuntimeError("boom"))

        with pytest.raises(AuthorizationError, match="boom"):
            handoff.wait(timeout=1)

    def test_timeout(self):
        handoff = AuthorizationHandoff()

        with pytest.raises(AuthorizationError, match="no authorization callback"):
            handoff.wait(timeout=0.01)

    def test_delivery_from_another_thread(self):
        handoff = AuthorizationHandoff()
        producer = threading.Thread(target=handoff.deliver, args=("threaded",))
        producer.start()

        assert handoff.wait(timeout=5) == "threaded"
        producer.join()
