"""Brightcove OAuth + CMS API client.

Maps HTTP failures onto the conveyor error taxonomy:
- 401 -> AuthExpiredError (the scheduler refreshes and retries once)
- 404 -> RemoteNotFoundError
- 429, 5xx, transport errors -> RemoteTransientError (retried here with backoff)
- other 4xx -> RemoteError

One client instance is shared by every slot worker; httpx.Client is safe
to use from multiple threads.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import httpx
import structlog

from conveyor.contracts import (
    AuthExpiredError,
    Credential,
    RemoteError,
    RemoteNotFoundError,
    RemoteTransientError,
)
from conveyor.engine.retry import RetryConfig, RetryManager

if TYPE_CHECKING:
    from collections.abc import Callable

    from conveyor.core.config import BrightcoveSettings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Status codes that indicate capacity limits or server trouble
TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504, 529})

_DOWNLOAD_CHUNK_BYTES = 1024 * 1024

# Temp files are created 0600; published assets must be world-readable
PUBLISHED_FILE_MODE = 0o644


def _raise_for_status(response: httpx.Response) -> None:
    """Translate an error response into a conveyor exception."""
    status = response.status_code
    if status < 400:
        return
    url = str(response.request.url)
    if status == 401:
        raise AuthExpiredError(f"Credential rejected by {url}", status_code=status)
    if status == 404:
        raise RemoteNotFoundError(f"Not found: {url}", status_code=status, url=url)
    if status in TRANSIENT_STATUS_CODES or status >= 500:
        raise RemoteTransientError(f"HTTP {status} from {url}", status_code=status, url=url)
    raise RemoteError(f"HTTP {status} from {url}", status_code=status, url=url)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, RemoteError) and error.retryable


class BrightcoveClient:
    """Thin client for the three remote operations the pipelines need.

    Example:
        client = BrightcoveClient(settings.brightcove, RetryManager(RetryConfig()))
        token = client.fetch_token()
        video = client.get_video("6301234567001", credential)
        client.download(source_url, Path("/assets/webroot_a/assets/video/6301234567001.mp4"))
    """

    def __init__(
        self,
        settings: BrightcoveSettings,
        retry: RetryManager | None = None,
        *,
        max_connections: int = 100,
        http: httpx.Client | None = None,
    ) -> None:
        self._settings = settings
        self._retry = retry or RetryManager(RetryConfig.no_retry())
        self._http = http or httpx.Client(
            timeout=httpx.Timeout(settings.timeout_seconds),
            limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections),
            follow_redirects=True,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> BrightcoveClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # === Credential exchange ===

    def fetch_token(self) -> str:
        """Exchange client credentials for an access token.

        Used as the CredentialManager's provider. A 401 here means the
        client ID/secret themselves are wrong, which is not retryable.
        """

        def _request() -> str:
            response = self._send(
                lambda: self._http.post(
                    self._settings.oauth_url,
                    data={"grant_type": "client_credentials"},
                    auth=(self._settings.client_id, self._settings.client_secret.get_secret_value()),
                )
            )
            try:
                token = response.json()["access_token"]
            except (ValueError, KeyError) as exc:
                raise RemoteError(f"OAuth response did not contain an access token: {exc}") from exc
            return str(token)

        return self._with_retry(_request, "fetch_token")

    # === CMS API ===

    def get_video(self, video_id: str, credential: Credential) -> dict[str, Any]:
        """Fetch the CMS metadata document for a video."""
        data = self._get_json(f"/accounts/{self._settings.account_id}/videos/{video_id}", credential)
        if not isinstance(data, dict):
            raise RemoteError(f"Unexpected metadata payload for video {video_id}: {type(data).__name__}")
        return data

    def get_sources(self, video_id: str, credential: Credential) -> list[dict[str, Any]]:
        """Fetch the rendition/source descriptors for a video."""
        data = self._get_json(f"/accounts/{self._settings.account_id}/videos/{video_id}/sources", credential)
        if not isinstance(data, list):
            raise RemoteError(f"Unexpected sources payload for video {video_id}: {type(data).__name__}")
        return data

    # === Payload download ===

    def download(self, url: str, destination: Path) -> int:
        """Stream url into destination, returning the number of bytes written.

        The payload is streamed to a uniquely named sibling ``.part`` file and
        renamed into place once complete, so an interrupted download never
        leaves a truncated file that a rerun would mistake for finished
        output, and concurrent downloads of the same item never share a file.
        """
        timeout = httpx.Timeout(self._settings.timeout_seconds, read=self._settings.download_timeout_seconds)

        def _stream() -> int:
            written = 0
            f = tempfile.NamedTemporaryFile(  # noqa: SIM115 - renamed into place, not deleted
                mode="wb", dir=destination.parent, prefix=f"{destination.name}.", suffix=".part", delete=False
            )
            partial = Path(f.name)
            try:
                with f, self._http.stream("GET", url, timeout=timeout) as response:
                    _raise_for_status(response)
                    for chunk in response.iter_bytes(_DOWNLOAD_CHUNK_BYTES):
                        f.write(chunk)
                        written += len(chunk)
                os.chmod(partial, PUBLISHED_FILE_MODE)
                os.replace(partial, destination)
            except httpx.TransportError as exc:
                partial.unlink(missing_ok=True)
                raise RemoteTransientError(f"Download failed for {url}: {exc}", url=url) from exc
            except BaseException:
                partial.unlink(missing_ok=True)
                raise
            return written

        size = self._with_retry(_stream, "download")
        logger.debug("payload_downloaded", url=url, path=str(destination), size_bytes=size)
        return size

    # === Internals ===

    def _get_json(self, path: str, credential: Credential) -> Any:
        url = f"{self._settings.cms_url.rstrip('/')}{path}"
        headers = {"Authorization": f"Bearer {credential.token}"}

        def _request() -> Any:
            response = self._send(lambda: self._http.get(url, headers=headers))
            try:
                return response.json()
            except ValueError as exc:
                raise RemoteError(f"Invalid JSON from {url}: {exc}", url=url) from exc

        return self._with_retry(_request, "cms_get")

    def _send(self, call: Callable[[], httpx.Response]) -> httpx.Response:
        try:
            response = call()
        except httpx.TransportError as exc:
            raise RemoteTransientError(f"Request failed: {exc}") from exc
        _raise_for_status(response)
        return response

    def _with_retry(self, operation: Callable[[], T], op_name: str) -> T:
        def _on_retry(attempt: int, error: BaseException) -> None:
            logger.warning("remote_call_retrying", operation=op_name, attempt=attempt, error=str(error))

        return self._retry.execute_with_retry(operation, is_retryable=_is_retryable, on_retry=_on_retry)
