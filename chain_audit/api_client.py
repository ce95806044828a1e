"""
VitalAI REST API client for reading the document chain and verifying documents.
"""
from __future__ import annotations

import logging
from typing import Any, List
from urllib.parse import quote

import requests

from .config import AuditConfig

logger = logging.getLogger(__name__)


class ChainApiClient:
    """Reads the document chain from a running VitalAI service."""

    def __init__(self, config: AuditConfig | None = None):
        self.config = config or AuditConfig()
        self._session = requests.Session()
        self._session.headers["Accept"] = "application/json"
        self._base = self.config.api_url.rstrip("/")

    def _request(self, method: str, path: str, headers: dict | None = None) -> dict:
        url = f"{self._base}{path}"
        r = self._session.request(method, url, headers=headers or {}, timeout=self.config.timeout)
        r.raise_for_status()
        return r.json()

    def fetch_chain(self) -> List[dict[str, Any]]:
        """All verification records in insertion order."""
        return self._request("GET", "/api/documents/chain").get("records", [])

    def verify_document(self, document_name: str, owner: str) -> bool:
        """Ask the service to re-hash one owner's stored document."""
        data = self._request(
            "POST",
            f"/api/documents/{quote(document_name)}/verify",
            headers={"X-User-Id": owner},
        )
        return bool(data.get("valid"))
