"""Async GitHub client for the detection rule repository."""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity.wait import wait_base

from api.config import settings
from api.services.errors import EnumerationError, FetchError, SourceError
from api.services.retry import http_retrying

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleFile:
    """A rule definition file found in the repository."""

    name: str
    path: str
    download_url: str


class GitHubRuleSource:
    """Reads rule files from a GitHub repository via the REST API.

    Without a token the public, unauthenticated API is used; behavior is the
    same apart from the lower rate limit.
    """

    def __init__(
        self,
        owner: str | None = None,
        repo: str | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_attempts: int | None = None,
        retry_wait: wait_base | None = None,
    ):
        self.owner = owner or settings.github_owner
        self.repo = repo or settings.github_repo
        self._token = token if token is not None else settings.github_token
        self._transport = transport
        self._retry_attempts = retry_attempts or settings.http_retry_attempts
        self._retry_wait = retry_wait
        self._client: httpx.AsyncClient | None = None

    @property
    def authenticated(self) -> bool:
        return bool(self._token)

    @property
    def repo_url(self) -> str:
        return f"{settings.github_api_url}/repos/{self.owner}/{self.repo}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=settings.request_timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """GET ``url``; transport failures and non-2xx responses raise SourceError."""
        client = self._get_client()
        try:
            resp = await http_retrying(self._retry_attempts, self._retry_wait)(client.get, url, params=params)
        except httpx.HTTPError as e:
            raise SourceError(f"GET {url} failed: {e!r}") from e

        if resp.status_code == 403 and resp.headers.get("x-ratelimit-remaining") == "0":
            raise SourceError(
                f"GitHub rate limit exhausted (resets at {resp.headers.get('x-ratelimit-reset', '?')}); "
                "configure RULESYNC_GITHUB_TOKEN for a higher limit"
            )
        if resp.is_error:
            raise SourceError(f"GET {url} returned HTTP {resp.status_code}")
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise SourceError(f"GET {resp.request.url} returned a non-JSON body") from e

    async def get_repository(self) -> dict:
        """Repository metadata (full_name, private, default_branch, updated_at...)."""
        repo = self._json(await self._get(self.repo_url))
        if not isinstance(repo, dict):
            raise SourceError(f"Unexpected repository response for {self.owner}/{self.repo}")
        return repo

    async def resolve_marker(self) -> str:
        """Head commit SHA of the default branch: one revision marker for the whole source."""
        repo = await self.get_repository()
        branch = repo.get("default_branch") or "main"
        resp = await self._get(f"{self.repo_url}/branches/{branch}")
        data = self._json(resp)
        commit = data.get("commit") if isinstance(data, dict) else None
        sha = commit.get("sha") if isinstance(commit, dict) else None
        if not sha:
            raise SourceError(f"No head commit for branch {branch!r}")
        return sha

    async def list_directory(self, path: str) -> list[dict]:
        """Raw contents listing of one directory."""
        try:
            data = self._json(await self._get(f"{self.repo_url}/contents/{path}"))
        except SourceError as e:
            raise EnumerationError(f"Failed to list {path}: {e}") from e
        return data if isinstance(data, list) else []

    def _is_rule_file(self, item: dict) -> bool:
        return (
            item.get("type") == "file"
            and item.get("name", "").endswith(settings.rule_file_extension)
            and bool(item.get("download_url"))
        )

    async def list_rule_files(self, root: str | None = None, limit: int | None = None) -> list[RuleFile]:
        """Collect rule files under ``root`` depth-first, in listing order.

        At most ``limit`` files are collected; once the cap is hit no further
        directories are listed. A directory that fails to list is logged and
        skipped.
        """
        root = root if root is not None else settings.rules_path
        limit = limit if limit is not None else settings.max_rule_files
        files: list[RuleFile] = []

        try:
            stack: list[Iterator[dict]] = [iter(await self.list_directory(root))]
        except EnumerationError as e:
            logger.error("%s", e)
            return files

        while stack and len(files) < limit:
            item = next(stack[-1], None)
            if item is None:
                stack.pop()
                continue
            if self._is_rule_file(item):
                files.append(RuleFile(name=item["name"], path=item["path"], download_url=item["download_url"]))
            elif item.get("type") == "dir":
                try:
                    stack.append(iter(await self.list_directory(item["path"])))
                except EnumerationError as e:
                    logger.warning("%s; skipping subtree", e)

        if len(files) >= limit:
            logger.warning("Rule file cap of %d reached; enumeration stopped early", limit)
        return files

    async def fetch_rule(self, rule_file: RuleFile) -> str:
        """Download the raw text of one rule file."""
        try:
            resp = await self._get(rule_file.download_url)
        except SourceError as e:
            raise FetchError(f"{rule_file.name}: {e}") from e
        return resp.text


# Singleton used across the application
rule_source = GitHubRuleSource()
