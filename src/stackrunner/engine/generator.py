"""Walks the command catalogue against the configuration tree."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from stackrunner.catalog.models import (
    CommandDefinition,
    RefreshConfig,
    SectionDefinition,
    SectionTree,
    sub_section_config_key,
)
from stackrunner.engine.assembler import AssemblyContext, assemble_command
from stackrunner.engine.context import AttachState, ConfigTree
from stackrunner.engine.expression import strict_equal

logger = py_logging.getLogger(__name__)

NO_SUITABLE_COMMAND = "No suitable command found for the current configuration."
NO_SECTION_COMMANDS = "No commands configured for this section and no active/valid sub-sections."

_MISSING = object()


@dataclass(frozen=True)
class CommandSpec:
    section_id: str
    command: str
    command_definition_id: int
    tab_title: str = ""
    is_sub_section_command: bool = False
    associated_containers: tuple[str, ...] = ()
    refresh_config: RefreshConfig | None = None
    type: Literal["command"] = "command"


@dataclass(frozen=True)
class ErrorEntry:
    section_id: str
    message: str
    title: str = ""
    command_definition_id: int | None = None
    type: Literal["error"] = "error"


GeneratedEntry = CommandSpec | ErrorEntry


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _find_config_holder(config: ConfigTree, object_name: str) -> Mapping[str, Any] | None:
    for section in config.values():
        if isinstance(section, Mapping) and object_name in section:
            return _as_mapping(section[object_name])
    return None


def _attach_lookup(attach_state: AttachState | Mapping[str, bool] | None, key: str) -> Any:
    if attach_state is None:
        return _MISSING
    values = attach_state.values if isinstance(attach_state, AttachState) else attach_state
    return values.get(key, _MISSING)


def _resolve_condition_value(
    key: str,
    *,
    config: ConfigTree,
    owner_id: str,
    parent_id: str | None,
    attach_state: AttachState | Mapping[str, bool] | None,
) -> Any:
    if "." in key:
        left, prop = key.split(".", 1)
        if left.endswith("attachState"):
            return _attach_lookup(attach_state, prop)
        if left.endswith("Config"):
            if prop == "enabled":
                direct = config.get(left[: -len("Config")])
                if direct is not None:
                    return _as_mapping(direct).get("enabled", _MISSING)
            holder = _find_config_holder(config, left)
            if holder is None:
                return _MISSING
            return holder.get(prop, _MISSING)
        value: Any = _as_mapping(config.get(owner_id))
        for part in key.split("."):
            if not isinstance(value, Mapping) or part not in value:
                return _MISSING
            value = value[part]
        return value

    if parent_id is not None:
        parent = _as_mapping(config.get(parent_id))
        if key.endswith("Selected"):
            return parent.get(key, _MISSING)
        return _as_mapping(parent.get(sub_section_config_key(owner_id))).get(key, _MISSING)
    return _as_mapping(config.get(owner_id)).get(key, _MISSING)


def _conditions_met(
    definition: CommandDefinition,
    *,
    config: ConfigTree,
    parent_id: str | None,
    attach_state: AttachState | Mapping[str, bool] | None,
) -> bool:
    for key, expected in definition.conditions.items():
        actual = _resolve_condition_value(
            key,
            config=config,
            owner_id=definition.section_id,
            parent_id=parent_id,
            attach_state=attach_state,
        )
        if actual is _MISSING or not strict_equal(actual, expected):
            return False
    return True


def _is_hidden_test_element(tree: SectionTree, element_id: str, show_test_sections: bool) -> bool:
    if show_test_sections:
        return False
    section = tree.section(element_id)
    if section is not None:
        return section.test_section
    found = tree.sub_section(element_id)
    if found is None:
        return False
    sub, parent = found
    return sub.test_section or parent.test_section


def _completeness_errors(
    tree: SectionTree,
    config: ConfigTree,
    definitions: Sequence[CommandDefinition],
    satisfied: set[str],
    show_test_sections: bool,
) -> list[ErrorEntry]:
    owners = {definition.section_id for definition in definitions}
    errors: list[ErrorEntry] = []

    for section in tree.sections:
        if section.test_section and not show_test_sections:
            continue
        section_config = _as_mapping(config.get(section.id))
        if section_config.get("enabled"):
            if section.id in owners:
                if section.id not in satisfied:
                    errors.append(ErrorEntry(section.id, NO_SUITABLE_COMMAND, title=section.title))
            elif not _any_sub_section_satisfied(section, section_config, satisfied):
                errors.append(ErrorEntry(section.id, NO_SECTION_COMMANDS, title=section.title))

        for sub in section.sub_sections:
            if sub.test_section and not show_test_sections:
                continue
            if not _as_mapping(section_config.get(sub.config_key)).get("enabled"):
                continue
            if sub.id in owners and sub.id not in satisfied:
                errors.append(ErrorEntry(sub.id, NO_SUITABLE_COMMAND, title=sub.title))

    return errors


def _any_sub_section_satisfied(
    section: SectionDefinition,
    section_config: Mapping[str, Any],
    satisfied: set[str],
) -> bool:
    for sub in section.sub_sections:
        if _as_mapping(section_config.get(sub.config_key)).get("enabled") and sub.id in satisfied:
            return True
    return False


def generate_command_list(
    config: ConfigTree,
    dropdown_values: Mapping[str, Any] | None = None,
    *,
    attach_state: AttachState | Mapping[str, bool] | None = None,
    definitions: Sequence[CommandDefinition] = (),
    sections: Sequence[SectionDefinition] | SectionTree = (),
    show_test_sections: bool = False,
) -> list[GeneratedEntry]:
    tree = sections if isinstance(sections, SectionTree) else SectionTree(sections)
    dropdowns = dict(dropdown_values or {})
    commands: list[GeneratedEntry] = []
    satisfied: set[str] = set()
    qualified: dict[str, list[int]] = {}

    for index, definition in enumerate(definitions):
        owner_id = definition.section_id
        if not tree.contains(owner_id):
            logger.debug("Skipping orphaned command definition id=%s section=%s", index, owner_id)
            continue
        if _is_hidden_test_element(tree, owner_id, show_test_sections):
            continue

        parent = tree.parent_of(owner_id) if tree.section(owner_id) is None else None
        parent_id = parent.id if parent is not None else None
        if not _conditions_met(definition, config=config, parent_id=parent_id, attach_state=attach_state):
            continue

        assembled = assemble_command(
            definition,
            AssemblyContext(
                config=config,
                section_id=owner_id,
                parent_section_id=parent_id,
                attach_state=attach_state,
                dropdown_values=dropdowns,
            ),
        )
        # Only the last condition key decides, whatever the owner.
        keys = list(definition.conditions)
        references_config = bool(keys) and "Config" in keys[-1]
        commands.append(
            CommandSpec(
                section_id=owner_id,
                command=assembled.command,
                command_definition_id=index,
                tab_title=assembled.tab_title,
                is_sub_section_command=references_config,
                associated_containers=assembled.associated_containers,
                refresh_config=assembled.refresh_config,
            )
        )
        satisfied.add(owner_id)
        qualified.setdefault(owner_id, []).append(index)

    for owner_id, ids in qualified.items():
        if len(ids) > 1:
            logger.warning(
                "Multiple command definitions qualified for section=%s definitions=%s; "
                "conditions should select exactly one",
                owner_id,
                ids,
            )

    commands.extend(_completeness_errors(tree, config, definitions, satisfied, show_test_sections))
    return commands
