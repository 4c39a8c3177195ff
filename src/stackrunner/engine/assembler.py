"""Turns one command definition into a concrete command string."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from stackrunner.catalog.models import CommandDefinition, ContainerRef, RefreshConfig, sub_section_config_key
from stackrunner.engine.context import AttachState, ConfigTree, evaluate_condition

_PLACEHOLDER = re.compile(r"\$\{(\w+)\}")


@dataclass(frozen=True)
class AssemblyContext:
    config: ConfigTree
    section_id: str
    parent_section_id: str | None = None
    attach_state: AttachState | Mapping[str, bool] | None = None
    dropdown_values: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_sub_section(self) -> bool:
        return self.parent_section_id is not None

    def evaluate(self, condition: str) -> bool:
        return evaluate_condition(
            condition,
            self.config,
            self.section_id,
            self.attach_state,
            self.dropdown_values,
        )

    def _own(self) -> Mapping[str, Any]:
        section = self.config.get(self.section_id)
        return section if isinstance(section, Mapping) else {}

    def _parent(self) -> Mapping[str, Any]:
        if self.parent_section_id is None:
            return {}
        section = self.config.get(self.parent_section_id)
        return section if isinstance(section, Mapping) else {}

    def _sub_config(self) -> Mapping[str, Any]:
        nested = self._parent().get(sub_section_config_key(self.section_id))
        return nested if isinstance(nested, Mapping) else {}

    def lookup_variable(self, name: str) -> Any | None:
        if self.is_sub_section:
            value = self._parent().get(name)
            if value is None:
                value = self._sub_config().get(name)
        else:
            value = self._own().get(name)
        if value is None:
            value = self.dropdown_values.get(name)
        if value is None and name == "mode":
            mode = self._sub_config().get("mode") if self.is_sub_section else self._own().get("mode")
            value = mode or None
        return value


@dataclass(frozen=True)
class AssembledCommand:
    command: str
    tab_title: str
    associated_containers: tuple[str, ...]
    refresh_config: RefreshConfig | None = None


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def substitute_variables(command: str, context: AssemblyContext) -> str:
    def _replace(match: re.Match[str]) -> str:
        value = context.lookup_variable(match.group(1))
        if value is None:
            return match.group(0)
        return _render(value)

    return _PLACEHOLDER.sub(_replace, command)


def resolve_tab_title(definition: CommandDefinition, context: AssemblyContext) -> str:
    title = definition.command.tab_title
    if isinstance(title, str):
        return title
    resolved = title.base
    for item in title.conditional_appends:
        if context.evaluate(item.condition):
            resolved += item.append
    return resolved


def resolve_containers(definition: CommandDefinition, context: AssemblyContext) -> tuple[str, ...]:
    names: list[str] = []
    for entry in definition.command.associated_containers:
        if isinstance(entry, ContainerRef):
            if not entry.name:
                continue
            if entry.condition and not context.evaluate(entry.condition):
                continue
            names.append(entry.name)
        elif entry:
            names.append(entry)
    return tuple(names)


def assemble_command(definition: CommandDefinition, context: AssemblyContext) -> AssembledCommand:
    template = definition.command
    command = template.base

    for modifier in template.modifiers:
        if not context.evaluate(modifier.condition):
            continue
        if modifier.append:
            command += modifier.append
        elif modifier.replace:
            command = modifier.replace

    command += template.post_modifiers

    for exclude in template.excludes:
        if context.evaluate(exclude.condition):
            command += exclude.append

    command += template.final_append
    command = template.prefix + command
    command = substitute_variables(command, context)

    return AssembledCommand(
        command=command,
        tab_title=resolve_tab_title(definition, context),
        associated_containers=resolve_containers(definition, context),
        refresh_config=template.refresh_config,
    )
