"""Load source definitions from a JSON seed file."""

import json
from pathlib import Path

from feedsync.sources.schemas import Source, slugify


def parse_seed_entry(entry: dict) -> Source:
    """Convert a JSON seed entry to a Source dataclass."""
    name = entry.get("name", "")
    return Source(
        id=entry.get("id") or slugify(name or entry["kind"]),
        kind=entry["kind"],
        name=name,
        enabled=entry.get("enabled", True),
        config=entry.get("config", {}),
        tags=list(entry.get("tags", [])),
    )


def load_seed_file(path: Path) -> list[Source]:
    """Read a JSON list of source entries.

    Accepts either a bare list or an object with a "sources" key.
    """
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("sources", [])
    return [parse_seed_entry(e) for e in data]
