"""Declarative registry of module storage files and their schema callables."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from pathlib import PurePath
from typing import Final

from clic_tools.constants import MAIN_MODULE_ID
from clic_tools.persistence.handle import DatabaseHandle
from clic_tools.persistence.migrations import (
    MigrationOutcome,
    ModuleInitializer,
    ModuleMigrator,
    ModuleSchema,
)

_ALIAS_UNSAFE: Final[re.Pattern[str]] = re.compile(r"[^0-9A-Za-z_]")
_IDENTIFIER: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][0-9A-Za-z_]*$")
_RESERVED_ALIASES: Final[frozenset[str]] = frozenset({"main", "temp"})

Initializer = Callable[[DatabaseHandle], None]
Migrator = Callable[[DatabaseHandle], MigrationOutcome]


class RegistryError(ValueError):
    """Raised for an invalid registry definition or an unknown module."""


def schema_alias(module_id: str) -> str:
    """Attach alias for ``module_id``: every non ``[A-Za-z0-9_]`` char becomes ``_``."""

    return _ALIAS_UNSAFE.sub("_", module_id)


def is_safe_alias(alias: str) -> bool:
    return bool(_IDENTIFIER.match(alias)) and alias.lower() not in _RESERVED_ALIASES


@dataclass(frozen=True, slots=True)
class ModuleDescriptor:
    id: str
    file: str
    name: str
    initializer: Initializer
    migrator: Migrator
    schema: ModuleSchema | None = None

    @property
    def alias(self) -> str:
        return schema_alias(self.id)

    @property
    def is_main(self) -> bool:
        return self.id == MAIN_MODULE_ID

    @classmethod
    def from_schema(cls, schema: ModuleSchema, *, file: str, name: str) -> ModuleDescriptor:
        return cls(
            id=schema.module_id,
            file=file,
            name=name,
            initializer=ModuleInitializer(schema),
            migrator=ModuleMigrator(schema),
            schema=schema,
        )


class SchemaRegistry:
    """Ordered, validated set of module descriptors.

    Exactly one descriptor per id, per file name and per attach alias. The main
    module (``clic-tools-main``) must be present; it is the federation target
    and never attached as an auxiliary.
    """

    def __init__(self, descriptors: Iterable[ModuleDescriptor]) -> None:
        items = tuple(descriptors)
        by_id: dict[str, ModuleDescriptor] = {}
        by_file: dict[str, ModuleDescriptor] = {}
        aliases: set[str] = set()
        for descriptor in items:
            validate_file_name(descriptor.file)
            if not descriptor.id.strip():
                raise RegistryError("module id must not be empty")
            if descriptor.id in by_id:
                raise RegistryError(f"duplicate module id {descriptor.id!r}")
            if descriptor.file in by_file:
                raise RegistryError(
                    f"file {descriptor.file!r} registered by both "
                    f"{by_file[descriptor.file].id!r} and {descriptor.id!r}"
                )
            alias = descriptor.alias
            if not descriptor.is_main:
                if not is_safe_alias(alias):
                    raise RegistryError(f"module id {descriptor.id!r} yields unusable alias {alias!r}")
                if alias in aliases:
                    raise RegistryError(f"alias {alias!r} collides for module {descriptor.id!r}")
                aliases.add(alias)
            by_id[descriptor.id] = descriptor
            by_file[descriptor.file] = descriptor
        if MAIN_MODULE_ID not in by_id:
            raise RegistryError(f"registry must contain the main module {MAIN_MODULE_ID!r}")
        self._descriptors = items
        self._by_id = by_id
        self._by_file = by_file

    def __iter__(self) -> Iterator[ModuleDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._by_id

    def get(self, module_id: str) -> ModuleDescriptor:
        try:
            return self._by_id[module_id]
        except KeyError as exc:
            known = ", ".join(sorted(self._by_id))
            raise RegistryError(f"unknown module {module_id!r}; known modules: {known}") from exc

    def for_file(self, file_name: str) -> ModuleDescriptor | None:
        return self._by_file.get(file_name)

    def main(self) -> ModuleDescriptor:
        return self._by_id[MAIN_MODULE_ID]

    def auxiliaries(self) -> tuple[ModuleDescriptor, ...]:
        return tuple(descriptor for descriptor in self._descriptors if not descriptor.is_main)

    def file_names(self) -> tuple[str, ...]:
        return tuple(descriptor.file for descriptor in self._descriptors)


def validate_file_name(file_name: str) -> None:
    if not file_name or file_name in {".", ".."}:
        raise RegistryError(f"invalid storage file name {file_name!r}")
    if PurePath(file_name).name != file_name or "/" in file_name or "\\" in file_name:
        raise RegistryError(f"storage file name {file_name!r} must not contain path separators")


__all__ = [
    "Initializer",
    "Migrator",
    "ModuleDescriptor",
    "RegistryError",
    "SchemaRegistry",
    "is_safe_alias",
    "schema_alias",
    "validate_file_name",
]
