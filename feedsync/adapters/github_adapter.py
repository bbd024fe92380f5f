"""
GitHub repository activity adapter.

Tracks releases, commits, pull requests and issues for a list of
repositories. Every (repo, event) pair is an independent sub-feed:

- A failing sub-feed is logged and skipped; the others still advance.
- The cursor keeps, per repo, `{event}_etag` for conditional requests
  (a 304 does not count against the REST rate limit) and `{event}_since`,
  a watermark compared against each item's publication time.
- The lowest x-ratelimit-remaining seen during the call is reported back
  so the sync engine can hold off before the budget runs out.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from feedsync.adapters.base import (
    TTL_FIELD,
    SourceAdapter,
    format_timestamp,
    make_item_id,
    parse_timestamp,
)
from feedsync.adapters.http_client import HTTPClient, RetryConfig
from feedsync.adapters.schemas import (
    ConfigField,
    NormalizedItem,
    SyncCursor,
    SyncResult,
    ValidationResult,
)
from feedsync.sources.schemas import Source

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
EVENT_TYPES = ("releases", "commits", "pulls", "issues")

_REPO_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+$")

_EVENT_REQUESTS: dict[str, tuple[str, dict[str, Any]]] = {
    "releases": ("/repos/{repo}/releases", {"per_page": 10}),
    "commits": ("/repos/{repo}/commits", {"per_page": 15}),
    "pulls": ("/repos/{repo}/pulls", {"state": "all", "sort": "updated", "direction": "desc", "per_page": 10}),
    "issues": ("/repos/{repo}/issues", {"state": "all", "sort": "updated", "direction": "desc", "per_page": 10}),
}

KIND = "github"


class GitHubSyncError(Exception):
    """Raised when every sub-feed of a sync call failed."""


@dataclass
class EventPage:
    """Normalized result of one (repo, event) request."""

    items: list[NormalizedItem] = field(default_factory=list)
    etag: str | None = None
    rate_limit_remaining: int | None = None
    rate_limit_reset_at: datetime | None = None


# ── Normalizers per event type ────────────────────────────────


def _login(obj: Any) -> str | None:
    return obj.get("login") if isinstance(obj, dict) else None


def normalize_release(source_id: str, repo: str, rel: dict[str, Any]) -> NormalizedItem:
    tag = rel.get("tag_name", "")
    name = rel.get("name") or tag
    return NormalizedItem(
        id=make_item_id(source_id, KIND, f"release:{repo}:{tag}"),
        source_id=source_id,
        source_kind=KIND,
        title=f"Release {name} in {repo}",
        url=rel.get("html_url", ""),
        published_at=parse_timestamp(rel.get("published_at") or rel.get("created_at")),
        snippet=rel.get("body") or "",
        author=_login(rel.get("author")),
        meta={"event": "release", "repo": repo, "tag": tag},
    )


def normalize_commit(source_id: str, repo: str, c: dict[str, Any]) -> NormalizedItem:
    sha = c.get("sha", "")
    commit = c.get("commit") or {}
    message = commit.get("message") or ""
    first_line = message.split("\n", 1)[0]
    author_info = commit.get("author") or {}
    committer_info = commit.get("committer") or {}
    return NormalizedItem(
        id=make_item_id(source_id, KIND, f"commit:{repo}:{sha}"),
        source_id=source_id,
        source_kind=KIND,
        title=f"Commit {sha[:7]} in {repo}: {first_line}",
        url=c.get("html_url", ""),
        # Committer date tracks when the commit landed, which suits a watermark.
        published_at=parse_timestamp(committer_info.get("date") or author_info.get("date")),
        snippet=message,
        author=_login(c.get("author")) or author_info.get("name"),
        meta={"event": "commit", "repo": repo, "sha": sha},
    )


def normalize_pull(source_id: str, repo: str, pr: dict[str, Any]) -> NormalizedItem:
    number = pr.get("number")
    state = "merged" if pr.get("merged_at") else pr.get("state", "")
    return NormalizedItem(
        id=make_item_id(source_id, KIND, f"pr:{repo}:{number}"),
        source_id=source_id,
        source_kind=KIND,
        title=f"PR #{number} {state} in {repo}: {pr.get('title', '')}",
        url=pr.get("html_url", ""),
        published_at=parse_timestamp(pr.get("updated_at") or pr.get("created_at")),
        snippet=pr.get("body") or "",
        author=_login(pr.get("user")),
        meta={"event": "pull", "repo": repo, "number": number, "state": state},
    )


def normalize_issue(source_id: str, repo: str, issue: dict[str, Any]) -> NormalizedItem | None:
    # The issues endpoint also lists pull requests; those come from "pulls".
    if issue.get("pull_request"):
        return None
    number = issue.get("number")
    state = issue.get("state", "")
    return NormalizedItem(
        id=make_item_id(source_id, KIND, f"issue:{repo}:{number}"),
        source_id=source_id,
        source_kind=KIND,
        title=f"Issue #{number} ({state}) in {repo}: {issue.get('title', '')}",
        url=issue.get("html_url", ""),
        published_at=parse_timestamp(issue.get("updated_at") or issue.get("created_at")),
        snippet=issue.get("body") or "",
        author=_login(issue.get("user")),
        meta={"event": "issue", "repo": repo, "number": number, "state": state},
    )


_NORMALIZERS = {
    "releases": normalize_release,
    "commits": normalize_commit,
    "pulls": normalize_pull,
    "issues": normalize_issue,
}


def _rate_limit(headers: Any) -> tuple[int | None, datetime | None]:
    remaining = headers.get("x-ratelimit-remaining")
    reset = headers.get("x-ratelimit-reset")
    try:
        remaining_value = int(remaining) if remaining is not None else None
    except ValueError:
        remaining_value = None
    try:
        reset_value = (
            datetime.fromtimestamp(int(reset), tz=timezone.utc) if reset is not None else None
        )
    except ValueError:
        reset_value = None
    return remaining_value, reset_value


class GitHubAdapter(SourceAdapter):
    """Adapter for GitHub repository activity via the REST API."""

    kind = KIND
    display_name = "GitHub Repository Tracker"
    description = "Track releases, commits, pull requests and issues from GitHub repositories."
    default_ttl_minutes = 10
    max_concurrency = 2

    def __init__(
        self,
        token: str | None = None,
        retry_config: RetryConfig | None = None,
        timeout: float | None = None,
        api_url: str = API_URL,
    ):
        """
        Initialize GitHub adapter.

        Args:
            token: Default token for sources without a credential_key
            retry_config: HTTP retry behaviour
            timeout: Request timeout in seconds
            api_url: REST API base URL (GitHub Enterprise installs differ)
        """
        self._default_token = token
        self._retry_config = retry_config
        self._timeout = timeout
        self._api_url = api_url.rstrip("/")

    def describe_config(self) -> list[ConfigField]:
        return [
            ConfigField("repos", "string[]", True, 'Repositories to track (e.g. ["owner/repo"])'),
            ConfigField(
                "events",
                "string[]",
                False,
                'Event types: "releases", "commits", "pulls", "issues" (default: all)',
            ),
            ConfigField("credential_key", "string", False, "Env var name holding a GitHub token"),
            TTL_FIELD,
        ]

    def _resolve_token(self, config: dict[str, Any]) -> str | None:
        key = config.get("credential_key")
        if key:
            return os.environ.get(key)
        return self._default_token

    def _headers(self, token: str | None, etag: str | None = None) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if etag:
            headers["If-None-Match"] = etag
        return headers

    async def validate(self, config: dict[str, Any]) -> ValidationResult:
        repos = config.get("repos")
        if not isinstance(repos, list) or not repos:
            return ValidationResult(
                ok=False,
                error="repos is required and must be a non-empty list of 'owner/repo' strings",
            )
        bad = [r for r in repos if not isinstance(r, str) or not _REPO_PATTERN.match(r)]
        if bad:
            return ValidationResult(ok=False, error=f"Invalid repository names: {bad}")

        events = config.get("events")
        if events is not None:
            unknown = [e for e in events if e not in EVENT_TYPES] if isinstance(events, list) else [events]
            if unknown:
                return ValidationResult(ok=False, error=f"Unknown event types: {unknown}")

        token = self._resolve_token(config)
        try:
            async with HTTPClient(self._retry_config, self._timeout) as client:
                response = await client.get(
                    f"{self._api_url}/repos/{repos[0]}",
                    headers=self._headers(token),
                )
        except Exception as e:
            return ValidationResult(ok=False, error=str(e))

        if len(repos) == 1:
            name = response.json().get("full_name", repos[0])
        else:
            name = f"{len(repos)} GitHub repos"
        return ValidationResult(ok=True, display_name=name)

    async def sync(self, source: Source, cursor: SyncCursor | None) -> SyncResult:
        repos: list[str] = source.config["repos"]
        events: list[str] = source.config.get("events") or list(EVENT_TYPES)
        token = self._resolve_token(source.config)
        previous = cursor.data if cursor else {}

        next_cursor: dict[str, dict[str, str]] = {
            repo: dict(previous.get(repo, {})) for repo in repos
        }
        items: list[NormalizedItem] = []
        min_remaining: int | None = None
        reset_at: datetime | None = None
        attempts = 0
        failures = 0
        last_error: Exception | None = None

        async with HTTPClient(self._retry_config, self._timeout) as client:
            for repo in repos:
                repo_cursor = next_cursor[repo]
                for event in events:
                    attempts += 1
                    try:
                        page = await self._fetch_event(
                            client,
                            source.id,
                            repo,
                            event,
                            token,
                            etag=repo_cursor.get(f"{event}_etag"),
                            since=parse_timestamp(repo_cursor.get(f"{event}_since")),
                        )
                    except Exception as e:
                        failures += 1
                        last_error = e
                        logger.warning(f"GitHub {event} fetch failed for {repo}: {e}")
                        continue

                    items.extend(page.items)
                    if page.etag:
                        repo_cursor[f"{event}_etag"] = page.etag
                    newest = max(
                        (it.published_at for it in page.items if it.published_at is not None),
                        default=None,
                    )
                    if newest is not None:
                        repo_cursor[f"{event}_since"] = format_timestamp(newest)

                    if page.rate_limit_remaining is not None and (
                        min_remaining is None or page.rate_limit_remaining < min_remaining
                    ):
                        min_remaining = page.rate_limit_remaining
                        reset_at = page.rate_limit_reset_at

        if attempts and failures == attempts:
            raise GitHubSyncError(
                f"All {attempts} GitHub requests failed for {source.id}: {last_error}"
            ) from last_error

        return SyncResult(
            items=items,
            next_cursor=SyncCursor(data=next_cursor),
            rate_limit_remaining=min_remaining,
            rate_limit_reset_at=reset_at,
        )

    async def _fetch_event(
        self,
        client: HTTPClient,
        source_id: str,
        repo: str,
        event: str,
        token: str | None,
        etag: str | None = None,
        since: datetime | None = None,
    ) -> EventPage:
        path, params = _EVENT_REQUESTS[event]
        response = await client.get(
            f"{self._api_url}{path.format(repo=repo)}",
            params=params,
            headers=self._headers(token, etag),
        )
        remaining, reset = _rate_limit(response.headers)
        page = EventPage(
            etag=response.headers.get("etag") or etag,
            rate_limit_remaining=remaining,
            rate_limit_reset_at=reset,
        )

        if response.status_code == 304:
            return page

        normalize = _NORMALIZERS[event]
        for raw in response.json():
            item = normalize(source_id, repo, raw)
            if item is None:
                continue
            if since is not None and item.published_at is not None and item.published_at <= since:
                continue
            page.items.append(item)
        return page
