"""Tests for nodeindexer.index.reconcile: known/new/stale computation."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from nodeindexer.dump.record import NodeRecord
from nodeindexer.index.client import IndexReadError
from nodeindexer.index.reconcile import (
    KNOWN_SET_LIMIT,
    Action,
    dedupe,
    fetch_known,
    known_set_query,
    recency_cutoff,
    reconcile,
)

if TYPE_CHECKING:
    from nodeindexer.index.client import IndexClient

NOW = datetime(2024, 5, 1, 12, 0, 0, 987654, tzinfo=timezone.utc)
NOW_STR = "2024-05-01T12:00:00Z"


def _record(address: str, blocks: int = 100) -> NodeRecord:
    return NodeRecord(
        address=address,
        good=True,
        last_success=datetime(2024, 5, 1, tzinfo=timezone.utc),
        percent_2h=1.0,
        percent_8h=1.0,
        percent_1d=1.0,
        percent_7d=1.0,
        percent_30d=1.0,
        blocks=blocks,
        services="NODE",
        version="70016",
        user_agent="Satoshi:0.20.1",
        user_agent_version="0.20.1",
    )


def _known(address: str, last_seen: str = "2024-05-01T06:00:00Z") -> dict[str, Any]:
    return {"address": address, "lastSeen": last_seen, "blocks": 50, "stale": False}


class TestKnownSetQuery:
    def test_cutoff_is_24h_before_now(self) -> None:
        assert recency_cutoff(NOW) == datetime(2024, 4, 30, 12, 0, 0, tzinfo=timezone.utc)

    def test_query_shape(self) -> None:
        assert known_set_query(NOW) == {
            "size": 10000,
            "query": {"range": {"lastSeen": {"gt": "2024-04-30T12:00:00Z"}}},
        }
        assert KNOWN_SET_LIMIT == 10000


class TestDedupe:
    def test_last_occurrence_wins(self) -> None:
        records, duplicates = dedupe([_record("A", 1), _record("B"), _record("A", 2)])
        assert list(records) == ["A", "B"]
        assert records["A"].blocks == 2
        assert duplicates == 1


class TestReconcile:
    def test_insert_update_and_stale(self) -> None:
        known = {"A": _known("A"), "B": _known("B")}
        plan = reconcile([_record("B"), _record("C")], known, NOW)

        assert plan.updates == ["B"]
        assert plan.inserts == ["C"]
        assert plan.stale == ["A"]

        by_address = {i.address: i for i in plan.instructions}
        assert by_address["B"].document["lastSeen"] == NOW_STR
        assert by_address["B"].document["stale"] is False
        assert by_address["C"].document["lastSeen"] == NOW_STR
        assert by_address["A"].action is Action.STALE
        assert by_address["A"].document == {"stale": True}

    def test_batch_instructions_come_before_stale(self) -> None:
        plan = reconcile([_record("B")], {"A": _known("A")}, NOW)
        assert [i.action for i in plan.instructions] == [Action.INSERT, Action.STALE]

    def test_no_known_set_means_all_inserts(self) -> None:
        plan = reconcile([_record("A"), _record("B")], {}, NOW)
        assert plan.inserts == ["A", "B"]
        assert plan.updates == []
        assert plan.stale == []

    def test_empty_batch_marks_every_known_stale(self) -> None:
        plan = reconcile([], {"A": _known("A")}, NOW)
        assert plan.stale == ["A"]

    def test_duplicate_address_yields_single_instruction(self) -> None:
        plan = reconcile([_record("A", 1), _record("A", 2)], {}, NOW)
        assert len(plan.instructions) == 1
        assert plan.instructions[0].document["blocks"] == 2
        assert plan.duplicates == 1

    def test_last_seen_never_moves_backwards(self) -> None:
        future = "2024-05-01T13:00:00Z"
        plan = reconcile([_record("A")], {"A": _known("A", last_seen=future)}, NOW)
        assert plan.instructions[0].document["lastSeen"] == future

    def test_second_cycle_is_all_updates(self) -> None:
        batch = [_record("A"), _record("B")]
        first = reconcile(batch, {}, NOW)
        known = {i.address: i.document for i in first.instructions}

        second = reconcile(batch, known, NOW + timedelta(minutes=5))
        assert second.inserts == []
        assert second.updates == ["A", "B"]
        assert second.stale == []


class TestFetchKnown:
    def test_returns_recent_documents(self, fake_index: Any, client: IndexClient) -> None:
        fake_index.docs = {
            "A": _known("A", "2024-05-01T06:00:00Z"),
            "OLD": _known("OLD", "2024-04-29T06:00:00Z"),
        }
        known = fetch_known(client, "mainnet.nodes", NOW)
        assert set(known.documents) == {"A"}
        assert known.truncated is False

    def test_sends_capped_range_query(self, fake_index: Any, client: IndexClient) -> None:
        fetch_known(client, "mainnet.nodes", NOW)
        (request,) = fake_index.requests_to("/_search")
        assert request.url.path == "/mainnet.nodes/_search"
        assert json.loads(request.content)["size"] == 10000

    def test_missing_index_is_empty(self, fake_index: Any, client: IndexClient) -> None:
        fake_index.exists = False
        known = fetch_known(client, "mainnet.nodes", NOW)
        assert known.documents == {}

    def test_read_failure_propagates(self, fake_index: Any, client: IndexClient) -> None:
        fake_index.search_status = 500
        with pytest.raises(IndexReadError):
            fetch_known(client, "mainnet.nodes", NOW)

    def test_cap_is_reported(
        self,
        fake_index: Any,
        client: IndexClient,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        original = fake_index._search

        def _capped(request: Any) -> Any:
            response = original(request)
            data = response.json()
            data["hits"]["total"]["value"] = 12000
            return httpx.Response(200, json=data)

        monkeypatch.setattr(fake_index, "_search", _capped)
        fake_index.docs = {"A": _known("A")}
        with caplog.at_level("WARNING", logger="nodeindexer.index.reconcile"):
            known = fetch_known(client, "mainnet.nodes", NOW)
        assert known.total == 12000
        assert known.truncated is True
        assert "capped" in caplog.text
