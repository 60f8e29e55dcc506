"""
Session guard — cookie-session login with a single re-login on expiry.

qBittorrent's Web API authenticates with a session cookie (``SID``).
The cookie expires silently; the API then answers ``403``.  The guard
logs in lazily, and on the first 403 for a request it logs in again
and replays the request exactly once.  A second 403 goes back to the
caller untouched so bad credentials cannot cause a login loop.

The logged-in flag is owned by one client instance and protected by a
lock; concurrent callers serialize their logins.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

import requests

from mediastack.core.reliability.cancel import CancelToken
from mediastack.core.reliability.retry import HttpRequest, RetryingTransport

logger = logging.getLogger(__name__)

SESSION_EXPIRED = 403

LoginFn = Callable[["CancelToken | None"], None]


class SessionGuard:
    """Per-client login state machine.

    Args:
        transport: Transport whose session holds the cookie jar.
        login: Performs the credential exchange; raises on failure.
        name: Label used in log lines.
    """

    def __init__(self, transport: RetryingTransport, login: LoginFn, name: str = "session"):
        self._transport = transport
        self._login = login
        self._name = name
        self._lock = threading.Lock()
        self._logged_in = False
        # Bumped on every successful login so a caller can tell whether
        # someone else already re-authenticated after its request started.
        self._generation = 0

    @property
    def logged_in(self) -> bool:
        return self._logged_in

    def ensure_logged_in(self, cancel: CancelToken | None = None) -> int:
        """Log in unless already logged in.

        Returns:
            The session generation the caller is now working with.
        """
        with self._lock:
            if not self._logged_in:
                self._do_login(cancel)
            return self._generation

    def invalidate(self) -> None:
        """Forget the current session."""
        with self._lock:
            self._logged_in = False

    def do_authenticated(
        self,
        request: HttpRequest,
        cancel: CancelToken | None = None,
    ) -> requests.Response:
        """Send ``request`` with a valid session, re-authenticating once on 403."""
        generation = self.ensure_logged_in(cancel)

        response = self._transport.execute(request, cancel)
        if response.status_code != SESSION_EXPIRED:
            return response

        response.close()
        logger.info("%s: session rejected (403), logging in again", self._name)

        with self._lock:
            if self._generation == generation:
                self._logged_in = False
                self._do_login(cancel)

        return self._transport.execute(request, cancel)

    def _do_login(self, cancel: CancelToken | None) -> None:
        """Run the login exchange. Caller holds the lock."""
        self._login(cancel)
        self._logged_in = True
        self._generation += 1
        logger.debug("%s: logged in (generation %d)", self._name, self._generation)
