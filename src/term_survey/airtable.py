"""Thin Airtable REST client.

All reads page through results with the ``offset`` token returned by Airtable.
Batch writes are chunked to Airtable's limit of 10 records per request with a
short pause between requests to stay under the rate limit.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .config import AirtableSettings, load_settings

logger = logging.getLogger(__name__)

BATCH_SIZE = 10


class AirtableError(Exception):
    """Raised when Airtable answers with a non-2xx status or cannot be reached.

    ``status_code`` is ``None`` for transport failures (connection, timeout).
    """

    def __init__(self, status_code: Optional[int], message: str):
        if status_code is None:
            super().__init__(f"Airtable request failed: {message}")
        else:
            super().__init__(f"Airtable API error: {status_code} - {message}")
        self.status_code = status_code
        self.message = message


@dataclass
class BatchResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    failed: int = 0

    @property
    def succeeded(self) -> int:
        return len(self.records)


def escape_formula_string(value: str) -> str:
    return str(value).replace("\\", "\\\\").replace('"', '\\"')


def _error_message(resp) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or "Unknown error"
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return err.get("message") or err.get("type") or "Unknown error"
    if isinstance(err, str):
        return err
    return "Unknown error"


class AirtableClient:
    def __init__(
        self,
        settings: Optional[AirtableSettings] = None,
        timeout: int = 15,
        batch_size: int = BATCH_SIZE,
        batch_delay: float = 0.2,
    ):
        self.settings = settings or load_settings()
        self.timeout = timeout
        self.batch_size = batch_size
        self.batch_delay = batch_delay

    # --------------------- helpers ---------------------

    def _table_url(self, table: str) -> str:
        return f"{self.settings.api_url}/{self.settings.base_id}/{quote(table, safe='')}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }

    def _check(self, resp) -> Dict[str, Any]:
        if resp.status_code >= 400:
            raise AirtableError(resp.status_code, _error_message(resp))
        return resp.json()

    def _request(self, send, url: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = send(url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise AirtableError(None, str(e)) from e
        return self._check(resp)

    # --------------------- reads ---------------------

    def list_records(
        self,
        table: str,
        formula: Optional[str] = None,
        max_records: Optional[int] = None,
        fields: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Return every record of ``table`` matching ``formula``, following pagination."""
        url = self._table_url(table)
        records: List[Dict[str, Any]] = []
        offset = None
        while True:
            params: Dict[str, Any] = {}
            if formula:
                params["filterByFormula"] = formula
            if max_records:
                params["maxRecords"] = max_records
            if fields:
                params["fields[]"] = fields
            if offset:
                params["offset"] = offset
            data = self._request(requests.get, url, params=params)
            page = data.get("records") or []
            records.extend(page)
            logger.debug(
                "Fetched %d records from %s (total: %d)", len(page), table, len(records)
            )
            offset = data.get("offset")
            if not offset or not page:
                break
            if max_records and len(records) >= max_records:
                break
        logger.info("Fetched %d records from %s", len(records), table)
        return records

    def get_record(self, table: str, record_id: str) -> Dict[str, Any]:
        return self._request(requests.get, f"{self._table_url(table)}/{record_id}")

    # --------------------- single-record writes ---------------------

    def create_record(self, table: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request(
            requests.post, self._table_url(table), json={"records": [{"fields": fields}]}
        )
        return data["records"][0]

    def update_record(
        self, table: str, record_id: str, fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        return self._request(
            requests.patch, f"{self._table_url(table)}/{record_id}", json={"fields": fields}
        )

    # --------------------- batch writes ---------------------

    def create_records(self, table: str, records: List[Dict[str, Any]]) -> BatchResult:
        """POST ``[{"fields": {...}}, ...]`` in batches; failed batches are counted, not raised."""
        return self._write_batches(requests.post, "Create", table, records)

    def update_records(self, table: str, records: List[Dict[str, Any]]) -> BatchResult:
        """PATCH ``[{"id": ..., "fields": {...}}, ...]`` in batches."""
        return self._write_batches(requests.patch, "Update", table, records)

    def _write_batches(self, send, label: str, table: str, records) -> BatchResult:
        result = BatchResult()
        url = self._table_url(table)
        for start in range(0, len(records), self.batch_size):
            batch = records[start : start + self.batch_size]
            batch_no = start // self.batch_size + 1
            try:
                resp = send(
                    url,
                    headers=self._headers(),
                    json={"records": batch},
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                logger.error("%s batch %d failed: %s", label, batch_no, e)
                result.failed += len(batch)
            else:
                if resp.status_code >= 400:
                    logger.error("%s batch %d failed: %s", label, batch_no, resp.text)
                    result.failed += len(batch)
                else:
                    written = resp.json().get("records") or []
                    result.records.extend(written)
                    logger.info(
                        "%s batch %d: %d records", label, batch_no, len(written)
                    )
            if start + self.batch_size < len(records) and self.batch_delay:
                time.sleep(self.batch_delay)
        return result
