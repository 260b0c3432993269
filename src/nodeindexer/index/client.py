"""Minimal HTTP client for the search index (Elasticsearch REST API)."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlsplit

import httpx

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from nodeindexer.config import IndexSettings

logger = logging.getLogger(__name__)

_NDJSON = "application/x-ndjson"


class IndexClientError(Exception):
    """Base class for search-index failures."""


class IndexTransportError(IndexClientError):
    """Raised when the index cannot be reached or rejects a whole request."""


class IndexReadError(IndexClientError):
    """Raised when a search request fails."""


class IndexNotFoundError(IndexReadError):
    """Raised when the searched index does not exist yet."""


def _index_path(index: str) -> str:
    return "/" + quote(index, safe="")


def _error_reason(response: httpx.Response) -> str:
    """Extract ``error.type`` from an index error body, falling back to text."""
    try:
        data = response.json()
    except ValueError:
        return response.text
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("type") or error.get("reason") or error)
    if error:
        return str(error)
    return response.text


class IndexClient:
    """Shared, reusable client for one index cluster.

    Requests go to the first endpoint; on a transport error the next endpoint
    is tried and the failing one moves to the back of the list.
    """

    def __init__(
        self,
        urls: Sequence[str],
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not urls:
            msg = "IndexClient requires at least one endpoint URL."
            raise ValueError(msg)
        self._urls = [url.rstrip("/") for url in urls]
        self._http = httpx.Client(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: IndexSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> IndexClient:
        """Build a client, then sniff and health-check as configured."""
        client = cls(settings.urls, timeout=settings.timeout, transport=transport)
        if settings.sniff:
            client.sniff()
        if settings.health_check:
            client.health_check()
        return client

    @property
    def urls(self) -> list[str]:
        return list(self._urls)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> IndexClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- transport ---------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        last_exc: httpx.TransportError | None = None
        for url in list(self._urls):
            try:
                return self._http.request(method, f"{url}{path}", **kwargs)
            except httpx.TransportError as exc:
                logger.warning("Index endpoint %s failed: %s", url, exc)
                last_exc = exc
                if len(self._urls) > 1:
                    self._urls.remove(url)
                    self._urls.append(url)
        msg = f"All index endpoints failed: {last_exc}"
        raise IndexTransportError(msg) from last_exc

    # -- cluster -----------------------------------------------------------

    def health_check(self) -> str:
        """Return the cluster health status; raise if it is ``red``."""
        response = self._request("GET", "/_cluster/health")
        if response.status_code != 200:
            msg = f"Health check failed ({response.status_code}): {_error_reason(response)}"
            raise IndexClientError(msg)
        status = str(response.json().get("status", "unknown"))
        if status == "red":
            msg = "Index cluster health is red."
            raise IndexClientError(msg)
        logger.info("Index cluster health: %s", status)
        return status

    def sniff(self) -> list[str]:
        """Replace the endpoint list with the HTTP nodes the cluster reports."""
        response = self._request("GET", "/_nodes/http")
        if response.status_code != 200:
            msg = f"Sniffing failed ({response.status_code}): {_error_reason(response)}"
            raise IndexClientError(msg)

        scheme = urlsplit(self._urls[0]).scheme or "http"
        discovered: list[str] = []
        for node in (response.json().get("nodes") or {}).values():
            address = (node.get("http") or {}).get("publish_address")
            if not address:
                continue
            # "hostname/10.0.0.1:9200" -> "10.0.0.1:9200"
            host_port = str(address).rsplit("/", 1)[-1]
            discovered.append(f"{scheme}://{host_port}")

        if discovered:
            logger.info("Sniffed %d index endpoint(s)", len(discovered))
            self._urls = discovered
        else:
            logger.warning("Sniffing found no HTTP nodes; keeping %s", ", ".join(self._urls))
        return self.urls

    # -- indices -----------------------------------------------------------

    def index_exists(self, index: str) -> bool:
        response = self._request("HEAD", _index_path(index))
        if response.status_code == 404:
            return False
        if response.status_code != 200:
            msg = f"Index check failed ({response.status_code}) for {index}"
            raise IndexClientError(msg)
        return True

    def create_index(self, index: str, body: dict[str, Any]) -> None:
        response = self._request("PUT", _index_path(index), json=body)
        if response.status_code not in (200, 201):
            msg = (
                f"Failed to create index {index} ({response.status_code}): "
                f"{_error_reason(response)}"
            )
            raise IndexClientError(msg)

    # -- documents ---------------------------------------------------------

    def search(self, index: str, body: dict[str, Any]) -> dict[str, Any]:
        """Run one search request and return the decoded response.

        Raises
        ------
        IndexNotFoundError
            If *index* does not exist.
        IndexReadError
            On any other failure, including transport errors.
        """
        try:
            response = self._request("POST", f"{_index_path(index)}/_search", json=body)
        except IndexTransportError as exc:
            msg = f"Search on {index} failed: {exc}"
            raise IndexReadError(msg) from exc

        if response.status_code == 404:
            reason = _error_reason(response)
            if reason == "index_not_found_exception":
                msg = f"Index {index} does not exist"
                raise IndexNotFoundError(msg)
            msg = f"Search on {index} failed (404): {reason}"
            raise IndexReadError(msg)
        if response.status_code != 200:
            msg = f"Search on {index} failed ({response.status_code}): {_error_reason(response)}"
            raise IndexReadError(msg)

        try:
            data: dict[str, Any] = response.json()
        except ValueError as exc:
            msg = f"Search on {index} returned invalid JSON"
            raise IndexReadError(msg) from exc
        return data

    def bulk(self, index: str, lines: Iterable[dict[str, Any]]) -> dict[str, Any]:
        """Send newline-delimited bulk *lines* (action, source, action, ...)."""
        payload = "".join(json.dumps(line, ensure_ascii=False) + "\n" for line in lines)
        response = self._request(
            "POST",
            f"{_index_path(index)}/_bulk",
            content=payload.encode("utf-8"),
            headers={"Content-Type": _NDJSON},
        )
        if response.status_code != 200:
            msg = f"Bulk request failed ({response.status_code}): {_error_reason(response)}"
            raise IndexTransportError(msg)
        try:
            data: dict[str, Any] = response.json()
        except ValueError as exc:
            msg = "Bulk request returned invalid JSON"
            raise IndexTransportError(msg) from exc
        return data
