"""Standard module schemas and the default registry built from them."""

from __future__ import annotations

from clic_tools.constants import DEFAULT_PASSWORD_HASH_ROUNDS
from clic_tools.persistence.modules import (
    ai,
    cost_assistant,
    main,
    notifications,
    planner,
    requests,
    warehouse,
)
from clic_tools.persistence.registry import ModuleDescriptor, SchemaRegistry
from clic_tools.security.passwords import PasswordHasher


def default_registry(
    *,
    password_hash_rounds: int = DEFAULT_PASSWORD_HASH_ROUNDS,
) -> SchemaRegistry:
    """Registry of the seven standard modules, main module first."""

    hasher = PasswordHasher(password_hash_rounds)
    return SchemaRegistry(
        (
            ModuleDescriptor.from_schema(
                main.build_schema(hasher=hasher), file=main.DB_FILE, name=main.DISPLAY_NAME
            ),
            ModuleDescriptor.from_schema(
                requests.build_schema(), file=requests.DB_FILE, name=requests.DISPLAY_NAME
            ),
            ModuleDescriptor.from_schema(
                planner.build_schema(), file=planner.DB_FILE, name=planner.DISPLAY_NAME
            ),
            ModuleDescriptor.from_schema(
                warehouse.build_schema(), file=warehouse.DB_FILE, name=warehouse.DISPLAY_NAME
            ),
            ModuleDescriptor.from_schema(
                cost_assistant.build_schema(),
                file=cost_assistant.DB_FILE,
                name=cost_assistant.DISPLAY_NAME,
            ),
            ModuleDescriptor.from_schema(
                notifications.build_schema(),
                file=notifications.DB_FILE,
                name=notifications.DISPLAY_NAME,
            ),
            ModuleDescriptor.from_schema(ai.build_schema(), file=ai.DB_FILE, name=ai.DISPLAY_NAME),
        )
    )


__all__ = ["default_registry"]
