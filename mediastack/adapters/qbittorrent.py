"""
qBittorrent adapter — Web API v2 behind a cookie session.

Login posts the WebUI credentials and receives an ``SID`` cookie,
which the transport's requests.Session keeps.  Every other call goes
through a SessionGuard so an expired cookie (403) triggers exactly
one re-login.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import requests

from mediastack.adapters.base import ApiClient, ApiError
from mediastack.core.reliability.cancel import CancelToken
from mediastack.core.reliability.retry import HttpRequest, RetryingTransport
from mediastack.core.reliability.session import SessionGuard

logger = logging.getLogger(__name__)


class LoginError(Exception):
    """qBittorrent rejected the WebUI credentials."""


class QBittorrentClient(ApiClient):
    """Session-authenticated qBittorrent client.

    The transport's session must not be shared with another qBittorrent
    client: it carries this client's cookie.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        transport: RetryingTransport | None = None,
    ):
        super().__init__(base_url, transport)
        self._username = username
        self._password = password
        self._guard = SessionGuard(self._transport, self._login, name="qbittorrent")

    @property
    def name(self) -> str:
        return "qbittorrent"

    @property
    def guard(self) -> SessionGuard:
        return self._guard

    def _login(self, cancel: CancelToken | None) -> None:
        request = HttpRequest(
            method="POST",
            url=f"{self._base_url}/api/v2/auth/login",
            # qBittorrent rejects logins whose Referer does not match its host
            headers={"Referer": self._base_url},
            data={"username": self._username, "password": self._password},
        )
        response = self._transport.execute(request, cancel)
        body = (response.text or "").strip()
        if response.status_code != 200 or body != "Ok.":
            raise LoginError(f"login failed: status {response.status_code}, body: {body[:200]}")
        logger.debug("qbittorrent: logged in as %s", self._username)

    def _execute(self, request: HttpRequest, cancel: CancelToken | None) -> requests.Response:
        return self._guard.do_authenticated(request, cancel)

    def get_preferences(self, cancel: CancelToken | None = None) -> dict[str, Any]:
        prefs = self._get_json("/api/v2/app/preferences", cancel=cancel)
        if not isinstance(prefs, dict):
            raise ApiError(self.name, 200, "preferences response is not an object")
        return prefs

    def set_preferences(
        self, prefs: dict[str, Any] | None, cancel: CancelToken | None = None
    ) -> None:
        """Apply preference changes (form field ``json``)."""
        payload = json.dumps(prefs or {})
        self._send("POST", "/api/v2/app/setPreferences", data={"json": payload}, cancel=cancel)
