"""Packaged default rows for module initializers."""

from __future__ import annotations

import json
from collections.abc import Mapping
from functools import lru_cache
from importlib import resources
from types import MappingProxyType
from typing import TYPE_CHECKING

import yaml

if TYPE_CHECKING:
    from clic_tools.persistence.handle import DatabaseHandle

SEED_RESOURCE = "seeds.yaml"


class SeedDataError(ValueError):
    """Raised when the packaged seed document is unreadable or malformed."""


@lru_cache(maxsize=1)
def load_seed_data() -> Mapping[str, object]:
    text = resources.files(__package__).joinpath(SEED_RESOURCE).read_text(encoding="utf-8")
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise SeedDataError(f"invalid YAML in {SEED_RESOURCE}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise SeedDataError(f"{SEED_RESOURCE} must contain a mapping")
    return MappingProxyType(dict(payload))


def seed_section(name: str) -> Mapping[str, object]:
    section = load_seed_data().get(name)
    if not isinstance(section, Mapping):
        raise SeedDataError(f"{SEED_RESOURCE} section {name!r} must be a mapping")
    return section


def seed_list(name: str) -> list[Mapping[str, object]]:
    section = load_seed_data().get(name)
    if not isinstance(section, list) or not all(isinstance(item, Mapping) for item in section):
        raise SeedDataError(f"{SEED_RESOURCE} section {name!r} must be a list of mappings")
    return list(section)


def seed_json(name: str) -> str:
    """Seed section serialized the way settings columns store JSON."""

    return json.dumps(seed_section(name), ensure_ascii=False, separators=(",", ":"))


def insert_settings_row(
    handle: DatabaseHandle, table: str, section: str, *, key: str = "settings"
) -> None:
    """Store seed ``section`` as one JSON value under ``key`` unless already present."""

    handle.execute(
        f"INSERT OR IGNORE INTO {table} (key, value) VALUES (?, ?)",
        (key, seed_json(section)),
    )


__all__ = [
    "SEED_RESOURCE",
    "SeedDataError",
    "insert_settings_row",
    "load_seed_data",
    "seed_json",
    "seed_list",
    "seed_section",
]
