"""OAuth2 authorization and authenticated transport for Google Drive."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from .exceptions import GriveAuthenticationError, GriveNetworkError

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"

# Refresh this many seconds before the access token actually expires
EXPIRY_MARGIN = 60.0


@dataclass
class Token:
    """An OAuth2 access token."""

    access_token: str
    expires_at: float
    refresh_token: str | None = None

    def is_expired(self, now: float | None = None) -> bool:
        """Check whether the token expires within the safety margin."""
        if now is None:
            now = time.time()
        return now >= self.expires_at - EXPIRY_MARGIN


class OAuth2:
    """OAuth2 installed-application flow against Google's token endpoint."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        refresh_token: str | None = None,
        http: httpx.Client | None = None,
        timeout: float = 30.0,
    ):
        """Initialize the OAuth2 helper.

        Args:
            client_id: OAuth client ID
            client_secret: OAuth client secret
            redirect_uri: Redirect URI registered for the client
            refresh_token: Refresh token from a previous authorization
            http: Optional httpx client (a private one is created otherwise)
            timeout: Request timeout in seconds
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.refresh_token = refresh_token
        self._http = http or httpx.Client(timeout=httpx.Timeout(timeout))
        self._token: Token | None = None
        self._lock = threading.Lock()

    def make_auth_url(self) -> str:
        """Build the URL the user opens to grant access."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": DRIVE_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    def _token_request(self, data: dict[str, str]) -> Token:
        try:
            response = self._http.post(TOKEN_URL, data=data)
        except httpx.RequestError as e:
            raise GriveNetworkError(f"Network error during token request: {e}") from e

        if response.status_code != 200:
            detail = ""
            try:
                body = response.json()
                detail = body.get("error_description") or body.get("error") or ""
            except ValueError:
                pass
            raise GriveAuthenticationError(
                f"Token request failed with status {response.status_code}"
                + (f": {detail}" if detail else ""),
                status_code=response.status_code,
            )

        body = response.json()
        token = Token(
            access_token=body["access_token"],
            expires_at=time.time() + float(body.get("expires_in", 3600)),
            refresh_token=body.get("refresh_token"),
        )
        if token.refresh_token:
            self.refresh_token = token.refresh_token
        self._token = token
        return token

    def auth(self, code: str) -> Token:
        """Exchange an authorization code for tokens."""
        logger.debug("Exchanging authorization code for tokens")
        return self._token_request(
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            }
        )

    def refresh(self) -> Token:
        """Obtain a new access token using the refresh token.

        Raises:
            GriveAuthenticationError: If no refresh token is known or the
                token endpoint rejects it
        """
        if not self.refresh_token:
            raise GriveAuthenticationError("No refresh token available")
        logger.debug("Refreshing access token")
        return self._token_request(
            {
                "refresh_token": self.refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            }
        )

    def access_token(self) -> str:
        """Return a valid access token, refreshing it when needed."""
        with self._lock:
            token = self._token
            if token is None or token.is_expired():
                token = self.refresh()
            return token.access_token


class AuthAgent:
    """Signs requests with the current access token.

    This is the only object that performs raw HTTP for the Drive API. A
    401 answer triggers exactly one token refresh and one resend.
    """

    def __init__(self, oauth: OAuth2, http: httpx.Client):
        self.oauth = oauth
        self.http = http

    def refresh_token(self) -> Token:
        """Force a token refresh."""
        with self.oauth._lock:
            return self.oauth.refresh()

    def _headers(self, extra: dict[str, str] | None) -> dict[str, str]:
        headers = dict(extra or {})
        headers["Authorization"] = f"Bearer {self.oauth.access_token()}"
        return headers

    def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Make an authenticated request.

        Returns:
            The response; a 401 is only returned if it persists after one
            refresh

        Raises:
            httpx.RequestError: On transport failures
        """
        extra_headers = kwargs.pop("headers", None)
        response = self.http.request(
            method, url, headers=self._headers(extra_headers), **kwargs
        )
        if response.status_code != 401 or not _replayable(kwargs.get("content")):
            return response

        logger.debug("Got 401 for %s %s, refreshing token once", method, url)
        response.close()
        self.refresh_token()
        return self.http.request(
            method, url, headers=self._headers(extra_headers), **kwargs
        )

    @contextmanager
    def stream(self, method: str, url: str, **kwargs: Any) -> Iterator[httpx.Response]:
        """Open a streamed authenticated request (context manager).

        A 401 is answered like in :meth:`request`: the body is discarded,
        the token refreshed and the stream opened once more.
        """
        extra_headers = kwargs.pop("headers", None)
        with self.http.stream(
            method, url, headers=self._headers(extra_headers), **kwargs
        ) as response:
            if response.status_code != 401:
                yield response
                return

        logger.debug("Got 401 for streamed %s %s, refreshing token once", method, url)
        self.refresh_token()
        with self.http.stream(
            method, url, headers=self._headers(extra_headers), **kwargs
        ) as response:
            yield response


def _replayable(content: Any) -> bool:
    return content is None or isinstance(content, (bytes, str))


class _CodeHandler(BaseHTTPRequestHandler):
    server: _CodeServer

    def do_GET(self) -> None:  # noqa: N802
        params = parse_qs(urlparse(self.path).query)
        codes = params.get("code")
        if not codes:
            logger.warning(f"Request received without auth code: {self.path}")
            self._reply(
                400,
                "pygrive authorization code redirect missing 'code' query "
                "parameter.\n\nTry the auth flow again.",
            )
            return
        self._reply(
            200, "Received pygrive authorization code. You may now close this window."
        )
        self.server.code = codes[0]

    def _reply(self, status: int, message: str) -> None:
        body = message.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("redirect listener: " + format, *args)


class _CodeServer(HTTPServer):
    code: str | None = None


def wait_for_auth_code(redirect_uri: str, timeout: float = 300.0) -> str:
    """Block until the OAuth redirect delivers an authorization code.

    Listens on the host/port of ``redirect_uri`` and serves requests one by
    one until a request carries a ``code`` query parameter.

    Args:
        redirect_uri: Local redirect URI, e.g. http://localhost:8080/
        timeout: Seconds to wait before giving up

    Returns:
        The authorization code

    Raises:
        GriveAuthenticationError: If no code arrives in time
    """
    parsed = urlparse(redirect_uri)
    host = parsed.hostname or "localhost"
    port = parsed.port or 80
    deadline = time.monotonic() + timeout

    with _CodeServer((host, port), _CodeHandler) as server:
        logger.info(f"Listening on {redirect_uri} for an authorization code")
        while server.code is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise GriveAuthenticationError(
                    "Timed out waiting for the authorization code"
                )
            server.timeout = remaining
            server.handle_request()
        return server.code
