"""
Canonical item schema and adapter contract types.

Every adapter MUST output NormalizedItem. The item store upserts by `id`,
so ids have to be deterministic for the same underlying external entity.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

SNIPPET_MAX_LENGTH = 300

ConfigFieldType = Literal["string", "number", "boolean", "string[]"]


def truncate(text: str, max_len: int = SNIPPET_MAX_LENGTH) -> str:
    """Truncate text to max_len characters, ending with an ellipsis when cut."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 1].rstrip() + "…"


class NormalizedItem(BaseModel):
    """
    CANONICAL ITEM SCHEMA

    One piece of content from any source kind. Identity is immutable;
    title/snippet may change between fetches when the source edits them.
    """

    id: str = Field(
        ...,
        description="Deterministic id, see make_item_id()",
        examples=["rss_hn_a1b2c3d4e5f67890"],
    )
    source_id: str = Field(..., description="Owning source identifier")
    source_kind: str = Field(..., description="Adapter kind of the owning source")
    title: str = Field(default="(untitled)")
    url: str = Field(default="")
    published_at: datetime | None = Field(
        default=None,
        description="Publication timestamp, None when the source gives none",
    )
    snippet: str = Field(default="", description="Plain-text excerpt")
    author: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)

    @field_validator("snippet")
    @classmethod
    def bound_snippet(cls, v: str) -> str:
        return truncate(v)

    @field_validator("title")
    @classmethod
    def default_title(cls, v: str) -> str:
        return v or "(untitled)"


class SyncCursor(BaseModel):
    """Opaque resumption state; only the owning adapter reads `data`."""

    data: dict[str, Any] = Field(default_factory=dict)


@dataclass
class ConfigField:
    """Describes one configuration key accepted by an adapter."""

    name: str
    type: ConfigFieldType
    required: bool
    description: str


@dataclass
class ValidationResult:
    """Outcome of probing a source configuration."""

    ok: bool
    display_name: str | None = None
    error: str | None = None


@dataclass
class SyncResult:
    """What an adapter returns from one sync call."""

    items: list[NormalizedItem] = field(default_factory=list)
    next_cursor: SyncCursor = field(default_factory=SyncCursor)
    rate_limit_remaining: int | None = None
    rate_limit_reset_at: datetime | None = None


@dataclass
class AdapterDescriptor:
    """Introspection record for one registered adapter kind."""

    kind: str
    display_name: str
    description: str
    default_ttl_minutes: int
    max_concurrency: int
    config_schema: list[ConfigField]
