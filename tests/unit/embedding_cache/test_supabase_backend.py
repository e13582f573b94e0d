"""
Unit tests for SupabaseBackend.

The requests.Session is mocked; tests check the PostgREST requests that
are sent and how responses are read.
"""

import json
import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock

import requests

from embedding_cache.backends.supabase_backend import (
    SupabaseBackend,
    _parse_content_range_count,
)
from embedding_cache.contracts.models import StoredEmbedding
from embedding_cache.core.exceptions import BackendError


STAMP = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def _response(status_code=200, body=None, headers=None, text=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    if body is None and text is not None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = body
    response.text = text if text is not None else json.dumps(body)
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def backend(session):
    return SupabaseBackend(
        "https://example.supabase.co",
        "service-key",
        session=session,
        page_size=2,
    )


def _row(text="A", user_id=None):
    return StoredEmbedding(
        content_hash=f"hash-{text}",
        chunk_text=text,
        section="intro",
        importance_score=0.9,
        embedding=[0.1, 0.2],
        created_at=STAMP,
        user_id=user_id,
    )


class TestSupabaseBackend:
    """Tests for the PostgREST requests."""

    def test_auth_headers(self, backend, session):
        """Test the key is sent as apikey and bearer token."""
        session.headers.update.assert_called_once_with({
            "apikey": "service-key",
            "Authorization": "Bearer service-key",
            "Content-Type": "application/json",
        })

    def test_upsert_request(self, backend, session):
        """Test upsert posts rows with on_conflict and merge-duplicates."""
        session.request.return_value = _response(201, text="")

        backend.upsert_embeddings([_row("A", user_id="user-1")])

        method, url = session.request.call_args[0]
        kwargs = session.request.call_args[1]
        assert method == "POST"
        assert url == "https://example.supabase.co/rest/v1/contract_embeddings"
        assert kwargs["params"] == {"on_conflict": "content_hash"}
        assert kwargs["headers"]["Prefer"] == "resolution=merge-duplicates,return=minimal"

        payload = json.loads(kwargs["data"])
        assert payload == [{
            "content_hash": "hash-A",
            "chunk_text": "A",
            "section": "intro",
            "importance_score": 0.9,
            "embedding": [0.1, 0.2],
            "created_at": "2024-06-01T12:00:00.000000+00:00",
            "user_id": "user-1",
        }]

    def test_upsert_omits_missing_owner(self, backend, session):
        """Test an anonymous write does not send user_id."""
        session.request.return_value = _response(201, text="")

        backend.upsert_embeddings([_row("A")])

        payload = json.loads(session.request.call_args[1]["data"])
        assert "user_id" not in payload[0]

    def test_upsert_mixed_owners_share_keys(self, backend, session):
        """Test a batch with and without owners sends one key set."""
        session.request.return_value = _response(201, text="")

        backend.upsert_embeddings([_row("A", user_id="user-1"), _row("B")])

        payload = json.loads(session.request.call_args[1]["data"])
        assert payload[1]["user_id"] is None
        assert set(payload[0]) == set(payload[1])

    def test_fetch_by_hashes(self, backend, session):
        """Test a single IN query and string-encoded vectors."""
        session.request.return_value = _response(body=[{
            "content_hash": "hash-A",
            "embedding": "[0.1,0.2]",
            "section": "intro",
            "importance_score": 0.9,
        }])

        rows = backend.fetch_by_hashes(["hash-A", "hash-B"])

        params = session.request.call_args[1]["params"]
        assert params["content_hash"] == "in.(hash-A,hash-B)"
        assert session.request.call_count == 1
        assert rows[0].embedding == [0.1, 0.2]

    def test_fetch_by_hashes_splits_large_lookups(self, backend, session):
        """Test long hash lists are looked up in bounded GETs."""
        hashes = [f"{i:064x}" for i in range(250)]
        session.request.side_effect = [
            _response(body=[{"content_hash": hashes[0], "embedding": [0.1], "section": "a", "importance_score": 1.0}]),
            _response(body=[]),
            _response(body=[{"content_hash": hashes[249], "embedding": [0.2], "section": "b", "importance_score": 1.0}]),
        ]

        rows = backend.fetch_by_hashes(hashes)

        assert session.request.call_count == 3
        filters = [call[1]["params"]["content_hash"] for call in session.request.call_args_list]
        assert [f.count(",") + 1 for f in filters] == [100, 100, 50]
        assert all(len(f) < 8000 for f in filters)
        assert filters[0].startswith(f"in.({hashes[0]},")
        assert filters[2].endswith(f",{hashes[249]})")
        assert [r.content_hash for r in rows] == [hashes[0], hashes[249]]

    def test_fetch_malformed_row(self, backend, session):
        """Test rows without an embedding raise BackendError."""
        session.request.return_value = _response(body=[{"content_hash": "hash-A"}])

        with pytest.raises(BackendError, match="Malformed"):
            backend.fetch_by_hashes(["hash-A"])

    def test_match_rpc(self, backend, session):
        """Test the similarity RPC arguments and result reshaping."""
        session.request.return_value = _response(body=[
            {"chunk_text": "Closing", "section": "closing", "similarity": 0.91, "importance_score": 2.0},
            {"chunk_text": "Price", "section": "price", "similarity": 0.82, "importance_score": 1.5},
        ])

        results = backend.match_embeddings([0.5, 0.5], threshold=0.7, limit=5, user_id="user-1")

        method, url = session.request.call_args[0]
        assert method == "POST"
        assert url.endswith("/rest/v1/rpc/search_similar_embeddings")
        assert json.loads(session.request.call_args[1]["data"]) == {
            "query_embedding": [0.5, 0.5],
            "match_threshold": 0.7,
            "match_count": 5,
            "user_id_filter": "user-1",
        }
        assert [r.text for r in results] == ["Closing", "Price"]
        assert results[0].importance == 2.0

    def test_delete_older_than(self, backend, session):
        """Test the age predicate and the count from Content-Range."""
        session.request.return_value = _response(204, text="", headers={"Content-Range": "*/12"})

        deleted = backend.delete_older_than(STAMP)

        kwargs = session.request.call_args[1]
        assert session.request.call_args[0][0] == "DELETE"
        assert kwargs["params"] == {"created_at": "lt.2024-06-01T12:00:00.000000+00:00"}
        assert "count=exact" in kwargs["headers"]["Prefer"]
        assert deleted == 12

    def test_fetch_stat_rows_paginates(self, backend, session):
        """Test stats reads every page."""
        session.request.side_effect = [
            _response(body=[{"section": "a"}, {"section": "b"}]),
            _response(body=[{"section": "c"}]),
        ]

        rows = backend.fetch_stat_rows(user_id="user-1")

        assert [r["section"] for r in rows] == ["a", "b", "c"]
        second = session.request.call_args_list[1][1]["params"]
        assert second["offset"] == "2"
        assert second["user_id"] == "eq.user-1"

    def test_fetch_stat_rows_reads_past_short_pages(self, backend, session):
        """Test paging follows the Content-Range total when max-rows caps pages."""
        session.request.side_effect = [
            _response(body=[{"section": "a"}], headers={"Content-Range": "0-0/3"}),
            _response(body=[{"section": "b"}], headers={"Content-Range": "1-1/3"}),
            _response(body=[{"section": "c"}], headers={"Content-Range": "2-2/3"}),
        ]

        rows = backend.fetch_stat_rows()

        assert [r["section"] for r in rows] == ["a", "b", "c"]
        calls = session.request.call_args_list
        assert [c[1]["params"]["offset"] for c in calls] == ["0", "1", "2"]
        assert calls[0][1]["headers"] == {"Prefer": "count=exact"}

    def test_fetch_stat_rows_empty_table(self, backend, session):
        session.request.return_value = _response(body=[], headers={"Content-Range": "*/0"})

        assert backend.fetch_stat_rows() == []
        assert session.request.call_count == 1

    def test_http_error(self, backend, session):
        """Test error statuses raise BackendError with the message."""
        session.request.return_value = _response(500, body={"message": "relation does not exist"})

        with pytest.raises(BackendError, match="relation does not exist") as exc_info:
            backend.fetch_by_hashes(["hash-A"])

        assert exc_info.value.status_code == 500
        assert exc_info.value.backend == "supabase"

    def test_transport_error(self, backend, session):
        """Test connection failures raise BackendError."""
        session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(BackendError, match="failed"):
            backend.match_embeddings([1.0], threshold=0.7, limit=10)

    def test_invalid_json(self, backend, session):
        """Test non-JSON bodies raise BackendError."""
        session.request.return_value = _response(200, text="<html>")

        with pytest.raises(BackendError, match="Invalid JSON"):
            backend.fetch_stat_rows()

    def test_non_list_payload(self, backend, session):
        """Test object payloads where rows are expected raise BackendError."""
        session.request.return_value = _response(body={"rows": []})

        with pytest.raises(BackendError, match="Expected a list"):
            backend.fetch_by_hashes(["hash-A"])


class TestContentRange:
    """Tests for _parse_content_range_count."""

    def test_star_total(self):
        assert _parse_content_range_count("*/12") == 12

    def test_range_total(self):
        assert _parse_content_range_count("0-9/40") == 40

    def test_unknown_total(self):
        assert _parse_content_range_count("0-9/*") is None

    def test_missing(self):
        assert _parse_content_range_count(None) is None
