"""Shared test fixtures for the node indexer."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from nodeindexer.index.client import IndexClient
from nodeindexer.index.writer import IndexWriter

if TYPE_CHECKING:
    from collections.abc import Iterator

INDEX = "mainnet.nodes"


class FakeIndex:
    """In-memory stand-in for the index REST API, served via MockTransport."""

    def __init__(self) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.exists = True
        self.health = "green"
        self.search_status: int | None = None
        self.item_errors: set[str] = set()
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def requests_to(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    def bulk_actions(self, request: httpx.Request) -> list[tuple[str, str, dict[str, Any]]]:
        """Decode a bulk request into ``(op, _id, body)`` triples."""
        lines = [json.loads(line) for line in request.content.decode().splitlines() if line]
        result = []
        for action, body in zip(lines[::2], lines[1::2]):
            op, meta = next(iter(action.items()))
            result.append((op, meta["_id"], body))
        return result

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/_cluster/health":
            return httpx.Response(200, json={"status": self.health})
        if path.endswith("/_search"):
            return self._search(request)
        if path.endswith("/_bulk"):
            return self._bulk(request)
        if request.method == "HEAD":
            return httpx.Response(200 if self.exists else 404)
        if request.method == "PUT":
            self.exists = True
            return httpx.Response(200, json={"acknowledged": True})
        return httpx.Response(404, json={"error": "not found"})

    def _search(self, request: httpx.Request) -> httpx.Response:
        if self.search_status is not None:
            return httpx.Response(
                self.search_status,
                json={"error": {"type": "search_phase_execution_exception"}},
            )
        if not self.exists:
            return httpx.Response(
                404, json={"error": {"type": "index_not_found_exception"}, "status": 404}
            )
        body = json.loads(request.content)
        cutoff = body["query"]["range"]["lastSeen"]["gt"]
        matching = [
            {"_id": doc_id, "_source": doc}
            for doc_id, doc in self.docs.items()
            if doc.get("lastSeen") and doc["lastSeen"] > cutoff
        ]
        return httpx.Response(
            200,
            json={"hits": {"total": {"value": len(matching)}, "hits": matching[: body["size"]]}},
        )

    def _bulk(self, request: httpx.Request) -> httpx.Response:
        items = []
        for op, doc_id, body in self.bulk_actions(request):
            if doc_id in self.item_errors:
                error = {"type": "mapper_parsing_exception", "reason": "failed to parse"}
                items.append({op: {"_id": doc_id, "status": 400, "error": error}})
                continue
            if op == "index":
                self.docs[doc_id] = dict(body)
            elif doc_id in self.docs:
                self.docs[doc_id].update(body["doc"])
            else:
                error = {"type": "document_missing_exception", "reason": "document missing"}
                items.append({op: {"_id": doc_id, "status": 404, "error": error}})
                continue
            items.append({op: {"_id": doc_id, "status": 200}})
        self.exists = True
        has_errors = any("error" in result for item in items for result in item.values())
        return httpx.Response(200, json={"errors": has_errors, "items": items})


@pytest.fixture()
def fake_index() -> FakeIndex:
    return FakeIndex()


@pytest.fixture()
def client(fake_index: FakeIndex) -> Iterator[IndexClient]:
    c = IndexClient(["http://es.test:9200"], transport=fake_index.transport)
    yield c
    c.close()


@pytest.fixture()
def writer(client: IndexClient) -> IndexWriter:
    return IndexWriter(client, INDEX)
