"""Async Elasticsearch REST client for rule documents and the sync checkpoint."""

import logging
from typing import Any

import httpx
from tenacity.wait import wait_base

from api.config import settings
from api.models.sync import SyncState
from api.services.errors import ConfigurationError, StoreError
from api.services.retry import http_retrying

logger = logging.getLogger(__name__)

CHECKPOINT_ID = "current-state"

SYNC_STATE_INDEX_BODY: dict[str, Any] = {
    "settings": {"number_of_shards": 1, "number_of_replicas": 0},
    "mappings": {
        "properties": {
            "lastMarker": {"type": "keyword"},
            "lastSyncTime": {"type": "date"},
            "updatedAt": {"type": "date"},
        }
    },
}

_REF = {"properties": {"id": {"type": "keyword"}, "name": {"type": "keyword"}, "reference": {"type": "keyword"}}}

RULES_INDEX_BODY: dict[str, Any] = {
    "settings": {
        "number_of_shards": 1,
        "number_of_replicas": 0,
        "analysis": {
            "analyzer": {
                "security_analyzer": {
                    "type": "custom",
                    "tokenizer": "standard",
                    "filter": ["lowercase", "stop"],
                }
            }
        },
    },
    "mappings": {
        "properties": {
            "id": {"type": "keyword"},
            "name": {
                "type": "text",
                "analyzer": "security_analyzer",
                "fields": {"keyword": {"type": "keyword"}},
            },
            "description": {"type": "text", "analyzer": "security_analyzer"},
            "query": {"type": "text", "index": False},
            "language": {"type": "keyword"},
            "type": {"type": "keyword"},
            "severity": {"type": "keyword"},
            "riskScore": {"type": "integer"},
            "tags": {"type": "keyword"},
            "references": {"type": "keyword"},
            "falsePositives": {"type": "text"},
            "threat": {
                "type": "nested",
                "properties": {
                    "framework": {"type": "keyword"},
                    "tactic": _REF,
                    "technique": {"type": "nested", **_REF},
                },
            },
            "requiredFields": {"type": "keyword"},
            "version": {"type": "integer"},
            "lastUpdated": {"type": "date"},
            "author": {"type": "keyword"},
            "license": {"type": "keyword"},
            "ruleSource": {"type": "keyword"},
            "enabled": {"type": "boolean"},
            "integration": {"type": "keyword"},
            "maturity": {"type": "keyword"},
            "creationDate": {"type": "date"},
            "updatedDate": {"type": "date"},
            "ruleId": {"type": "keyword"},
            "note": {"type": "text"},
            "anomalyThreshold": {"type": "integer"},
        }
    },
}


class RuleStore:
    """Document store (rules index) and checkpoint store (sync state index)."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        rules_index: str | None = None,
        state_index: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_attempts: int | None = None,
        retry_wait: wait_base | None = None,
    ):
        self.base_url = (base_url or settings.elastic_url or "").rstrip("/")
        self._api_key = api_key or settings.elastic_api_key
        self.rules_index = rules_index or settings.rules_index
        self.state_index = state_index or settings.sync_state_index
        self._transport = transport
        self._retry_attempts = retry_attempts or settings.http_retry_attempts
        self._retry_wait = retry_wait
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self._api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if not self.is_configured:
            raise ConfigurationError("Elasticsearch client not configured")
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"ApiKey {self._api_key}"},
                timeout=settings.elastic_timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request with retries; transport errors raise StoreError, HTTP status is left to the caller."""
        client = self._get_client()
        retrying = http_retrying(self._retry_attempts, self._retry_wait)
        try:
            return await retrying(client.request, method, path, **kwargs)
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e!r}") from e

    @staticmethod
    def _check(resp: httpx.Response) -> httpx.Response:
        if resp.is_error:
            raise StoreError(f"{resp.request.method} {resp.request.url.path} returned HTTP {resp.status_code}")
        return resp

    @staticmethod
    def _body(resp: httpx.Response) -> dict:
        try:
            data = resp.json()
        except ValueError as e:
            raise StoreError(f"{resp.request.method} {resp.request.url.path} returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise StoreError(f"{resp.request.method} {resp.request.url.path} returned an unexpected body")
        return data

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def _ensure_index(self, index: str, body: dict) -> None:
        resp = await self._request("HEAD", f"/{index}")
        if resp.status_code == 200:
            return
        if resp.status_code != 404:
            self._check(resp)
        resp = await self._request("PUT", f"/{index}", json=body)
        # Another writer may have created it between HEAD and PUT
        if resp.status_code == 400 and "resource_already_exists_exception" in resp.text:
            return
        self._check(resp)
        logger.info("Created index: %s", index)

    async def ensure_schema(self) -> None:
        """Create the checkpoint and rules indices if they do not exist."""
        try:
            await self._ensure_index(self.state_index, SYNC_STATE_INDEX_BODY)
            await self._ensure_index(self.rules_index, RULES_INDEX_BODY)
        except StoreError as e:
            raise ConfigurationError(f"Cannot create indices: {e}") from e

    # ------------------------------------------------------------------
    # Rule documents
    # ------------------------------------------------------------------

    async def exists(self, doc_id: str) -> bool:
        resp = await self._request("HEAD", f"/{self.rules_index}/_doc/{doc_id}")
        if resp.status_code == 404:
            return False
        self._check(resp)
        return True

    async def upsert(self, doc_id: str, document: dict) -> None:
        resp = await self._request(
            "PUT", f"/{self.rules_index}/_doc/{doc_id}", params={"refresh": "false"}, json=document,
        )
        self._check(resp)

    async def refresh(self) -> None:
        self._check(await self._request("POST", f"/{self.rules_index}/_refresh"))

    async def count(self) -> int:
        resp = self._check(await self._request("GET", f"/{self.rules_index}/_count"))
        return int(self._body(resp).get("count", 0))

    async def ping(self) -> bool:
        try:
            resp = await self._request("GET", "/")
        except (StoreError, ConfigurationError):
            return False
        return resp.status_code == 200

    # ------------------------------------------------------------------
    # Checkpoint
    # ------------------------------------------------------------------

    async def get_checkpoint(self) -> SyncState:
        resp = await self._request("GET", f"/{self.state_index}/_doc/{CHECKPOINT_ID}")
        if resp.status_code == 404:
            return SyncState()
        self._check(resp)
        return SyncState.model_validate(self._body(resp).get("_source") or {})

    async def put_checkpoint(self, state: SyncState) -> None:
        resp = await self._request(
            "PUT",
            f"/{self.state_index}/_doc/{CHECKPOINT_ID}",
            params={"refresh": "true"},
            json=state.to_document(),
        )
        self._check(resp)


# Singleton used across the application
rule_store = RuleStore()
