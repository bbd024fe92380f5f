"""Tests for seed file loading."""

import json

import pytest

from feedsync.sources.seed import load_seed_file, parse_seed_entry


class TestParseSeedEntry:
    """Tests for parse_seed_entry()."""

    def test_full_entry(self):
        source = parse_seed_entry(
            {
                "id": "cpython",
                "kind": "github",
                "name": "CPython",
                "config": {"repos": ["python/cpython"]},
                "tags": ["python"],
                "enabled": False,
            }
        )

        assert source.id == "cpython"
        assert source.config == {"repos": ["python/cpython"]}
        assert source.enabled is False

    def test_id_derived_from_name(self):
        source = parse_seed_entry({"kind": "rss", "name": "Hacker News"})

        assert source.id == "hacker-news"
        assert source.enabled is True
        assert source.tags == []

    def test_id_derived_from_kind_without_name(self):
        assert parse_seed_entry({"kind": "youtube"}).id == "youtube"

    def test_missing_kind(self):
        with pytest.raises(KeyError):
            parse_seed_entry({"name": "orphan"})


class TestLoadSeedFile:
    """Tests for load_seed_file()."""

    def test_bare_list(self, tmp_path):
        path = tmp_path / "seed.json"
        path.write_text(json.dumps([{"kind": "rss", "name": "A"}, {"kind": "rss", "name": "B"}]))

        assert [s.id for s in load_seed_file(path)] == ["a", "b"]

    def test_sources_key(self, tmp_path):
        path = tmp_path / "seed.json"
        path.write_text(json.dumps({"sources": [{"kind": "rss", "name": "A"}]}))

        assert len(load_seed_file(path)) == 1
