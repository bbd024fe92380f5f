"""Data models for the sources module."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Source:
    """A configured instance of an adapter kind (one feed URL, one channel, ...).

    `config` is opaque to everything except the adapter for `kind`; the only
    key the engine reads is the optional `ttl_minutes` override.
    """

    id: str
    kind: str
    name: str = ""
    enabled: bool = True
    config: dict = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    @property
    def ttl_override_minutes(self) -> float | None:
        """Source-level freshness window, if configured."""
        value = self.config.get("ttl_minutes")
        if value is None or isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None


def slugify(text: str, max_length: int = 48) -> str:
    """Lowercase, hyphen-separated identifier derived from a display name."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "source"
