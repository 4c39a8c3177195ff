"""Condition context construction and the condition entry point."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from stackrunner.engine.expression import evaluate_expression

ConfigTree = Mapping[str, Mapping[str, Any]]


@dataclass(frozen=True)
class AttachState:
    """Per-section attach toggles plus the parallel warning flags."""

    values: Mapping[str, bool] = field(default_factory=dict)
    warnings: Mapping[str, bool] = field(default_factory=dict)

    def is_attached(self, section_id: str) -> bool:
        return bool(self.values.get(section_id, False))


@dataclass(frozen=True)
class ConfigState:
    config: ConfigTree = field(default_factory=dict)
    attach_state: AttachState = field(default_factory=AttachState)
    dropdown_values: Mapping[str, Any] = field(default_factory=dict)


def _attach_values(attach_state: AttachState | Mapping[str, bool] | None) -> Mapping[str, bool]:
    if attach_state is None:
        return {}
    if isinstance(attach_state, AttachState):
        return attach_state.values
    return attach_state


def build_condition_context(
    section_id: str,
    config: ConfigTree,
    attach_state: AttachState | Mapping[str, bool] | None = None,
    dropdown_values: Mapping[str, Any] | None = None,
) -> Mapping[str, Any]:
    context: dict[str, Any] = {}

    own = config.get(section_id)
    if isinstance(own, Mapping):
        context.update(own)

    for key, section in config.items():
        context[f"{key}Config"] = section
        if isinstance(section, Mapping):
            for sub_key, value in section.items():
                if sub_key.endswith("Config"):
                    context[sub_key] = value

    context["attachState"] = dict(_attach_values(attach_state))

    if dropdown_values:
        context.update(dropdown_values)

    return MappingProxyType(context)


def evaluate_condition(
    expression: str,
    config: ConfigTree,
    section_id: str,
    attach_state: AttachState | Mapping[str, bool] | None = None,
    dropdown_values: Mapping[str, Any] | None = None,
) -> bool:
    context = build_condition_context(section_id, config, attach_state, dropdown_values)
    return evaluate_expression(expression, context)
