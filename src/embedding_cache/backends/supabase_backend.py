"""
Supabase backend - embedding cache rows over the PostgREST HTTP API.

Talks to the `contract_embeddings` table and the
`search_similar_embeddings` Postgres function (pgvector) of a Supabase
project. See db/contract_embeddings.sql for the matching schema.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..contracts.models import (
    SimilarSection,
    StoredEmbedding,
    format_timestamp,
)
from ..core.config import DEFAULT_MATCH_FUNCTION, DEFAULT_TABLE
from ..core.exceptions import BackendError
from .base import Clock, EmbeddingBackend


logger = logging.getLogger(__name__)

# 100 SHA-256 hex digests make an in.(...) filter of about 6.5k characters
LOOKUP_BATCH_SIZE = 100


class SupabaseBackend(EmbeddingBackend):
    """
    PostgREST client for the embedding cache table.

    Every request goes through one requests.Session. Transport errors,
    HTTP error statuses and unreadable payloads are raised as BackendError.

    Example:
        >>> backend = SupabaseBackend("https://xyz.supabase.co", key)
        >>> rows = backend.fetch_by_hashes(["ab12..."])
    """

    name = "supabase"

    def __init__(
        self,
        url: str,
        api_key: str,
        table: str = DEFAULT_TABLE,
        match_function: str = DEFAULT_MATCH_FUNCTION,
        timeout: int = 30,
        page_size: int = 1000,
        lookup_batch_size: int = LOOKUP_BATCH_SIZE,
        session: Optional[requests.Session] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the backend.

        Args:
            url: Supabase project URL
            api_key: Service role or anon key
            table: Embedding table name
            match_function: Similarity search function name
            timeout: Request timeout in seconds
            page_size: Rows per page when reading the whole table
            lookup_batch_size: Hashes per GET in fetch_by_hashes
            session: Optional preconfigured session
            clock: Optional clock for created_at stamps
        """
        super().__init__(clock=clock)
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.table = table
        self.match_function = match_function
        self.timeout = timeout
        self.page_size = page_size
        self.lookup_batch_size = lookup_batch_size
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    # =========================================================================
    # Operations
    # =========================================================================

    def upsert_embeddings(self, rows: Sequence[StoredEmbedding]) -> None:
        if not rows:
            return

        payload = []
        for row in rows:
            record = row.to_dict()
            if record["user_id"] is None:
                del record["user_id"]
            payload.append(record)

        # PostgREST bulk inserts need one key set for every object
        key_sets = {frozenset(record) for record in payload}
        if len(key_sets) > 1:
            for record in payload:
                record.setdefault("user_id", None)

        self._request(
            "POST",
            f"/{self.table}",
            params={"on_conflict": "content_hash"},
            json_body=payload,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        logger.debug(f"Upserted {len(payload)} rows into {self.table}")

    def fetch_by_hashes(self, hashes: Sequence[str]) -> List[StoredEmbedding]:
        if not hashes:
            return []

        # One GET per batch keeps the in.(...) filter well under URL limits
        rows: List[Dict[str, Any]] = []
        for start in range(0, len(hashes), self.lookup_batch_size):
            batch = hashes[start:start + self.lookup_batch_size]
            response = self._request(
                "GET",
                f"/{self.table}",
                params={
                    "select": "content_hash,embedding,section,importance_score",
                    "content_hash": f"in.({','.join(batch)})",
                },
            )
            rows.extend(self._json_list(response))

        try:
            return [StoredEmbedding.from_dict(row) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise BackendError(
                f"Malformed embedding row from {self.table}: {e}",
                backend=self.name,
            )

    def match_embeddings(
        self,
        query_embedding: Sequence[float],
        threshold: float,
        limit: int,
        user_id: Optional[str] = None,
    ) -> List[SimilarSection]:
        response = self._request(
            "POST",
            f"/rpc/{self.match_function}",
            json_body={
                "query_embedding": list(query_embedding),
                "match_threshold": threshold,
                "match_count": limit,
                "user_id_filter": user_id,
            },
        )
        rows = self._json_list(response)

        try:
            return [SimilarSection.from_row(row) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise BackendError(
                f"Malformed row from {self.match_function}: {e}",
                backend=self.name,
            )

    def delete_older_than(self, cutoff: datetime) -> Optional[int]:
        response = self._request(
            "DELETE",
            f"/{self.table}",
            params={"created_at": f"lt.{format_timestamp(cutoff)}"},
            headers={"Prefer": "count=exact,return=minimal"},
        )
        return _parse_content_range_count(response.headers.get("Content-Range"))

    def fetch_stat_rows(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"select": "section,importance_score,chunk_text", "order": "content_hash"}
        if user_id:
            params["user_id"] = f"eq.{user_id}"

        rows: List[Dict[str, Any]] = []
        total: Optional[int] = None
        offset = 0
        while True:
            page_params = dict(params, limit=str(self.page_size), offset=str(offset))
            response = self._request(
                "GET",
                f"/{self.table}",
                params=page_params,
                headers={"Prefer": "count=exact"},
            )
            if total is None:
                total = _parse_content_range_count(response.headers.get("Content-Range"))
            page = self._json_list(response)
            rows.extend(page)

            # The server's max-rows setting can cap pages below page_size
            if not page:
                break
            if total is not None:
                if len(rows) >= total:
                    break
            elif len(page) < self.page_size:
                break
            offset += len(page)

        return rows

    def close(self) -> None:
        """Close the session."""
        if self.session:
            self.session.close()

    # =========================================================================
    # HTTP helpers
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """
        Send a request to PostgREST.

        Raises:
            BackendError: On transport failure or an HTTP error status
        """
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url}")

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                data=json.dumps(json_body) if json_body is not None else None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise BackendError(f"Request to {url} failed: {e}", backend=self.name)

        if response.status_code >= 400:
            raise BackendError(
                f"Supabase error {response.status_code} on {method} {path}: "
                f"{_error_detail(response)}",
                backend=self.name,
                status_code=response.status_code,
            )

        return response

    def _json_list(self, response: requests.Response) -> List[Dict[str, Any]]:
        """Decode a response body that must be a JSON array of objects."""
        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(f"Invalid JSON from Supabase: {e}", backend=self.name)

        if data is None:
            return []
        if not isinstance(data, list):
            raise BackendError(
                f"Expected a list of rows from Supabase, got {type(data).__name__}",
                backend=self.name,
            )
        return data


def _error_detail(response: requests.Response) -> str:
    """Best-effort message from a PostgREST error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or json.dumps(body)[:500]
    return str(body)[:500]


def _parse_content_range_count(header: Optional[str]) -> Optional[int]:
    """
    Read the total from a Content-Range header such as '*/12' or '0-9/12'.
    """
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1]
    if not total.isdigit():
        return None
    return int(total)
