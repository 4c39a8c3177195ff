"""Load-time documents: section tree and command catalogue."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from stackrunner.errors import ExitCode, StackRunnerError

_SUB_SUFFIX = re.compile(r"-sub$")


def sub_section_config_key(sub_section_id: str) -> str:
    """Key under which a sub-section's config lives inside its parent's config."""
    return f"{_SUB_SUFFIX.sub('', sub_section_id)}Config"


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class SubSectionDefinition(_Document):
    id: str
    title: str = ""
    test_section: bool = Field(default=False, alias="testSection")

    @property
    def config_key(self) -> str:
        return sub_section_config_key(self.id)


class SectionDefinition(_Document):
    id: str
    title: str = ""
    test_section: bool = Field(default=False, alias="testSection")
    sub_sections: tuple[SubSectionDefinition, ...] = Field(default=(), alias="subSections")

    @model_validator(mode="before")
    @classmethod
    def _lift_components(cls, data: Any) -> Any:
        # Older documents nest sub-sections under "components".
        if isinstance(data, dict) and "subSections" not in data and "sub_sections" not in data:
            components = data.get("components")
            if isinstance(components, dict) and isinstance(components.get("subSections"), list):
                return {**data, "subSections": components["subSections"]}
        return data


class ConditionalAppend(_Document):
    condition: str
    append: str = ""


class Modifier(_Document):
    condition: str
    append: str | None = None
    replace: str | None = None


class TabTitle(_Document):
    base: str = ""
    conditional_appends: tuple[ConditionalAppend, ...] = Field(default=(), alias="conditionalAppends")


class ContainerRef(_Document):
    name: str
    condition: str | None = None


class RefreshStep(_Document):
    command: str
    condition: str | None = None


class RefreshConfig(_Document):
    prepend_commands: tuple[RefreshStep, ...] = Field(default=(), alias="prependCommands")
    append_commands: tuple[RefreshStep, ...] = Field(default=(), alias="appendCommands")


class CommandTemplate(_Document):
    base: str = ""
    modifiers: tuple[Modifier, ...] = ()
    post_modifiers: str = Field(default="", alias="postModifiers")
    excludes: tuple[ConditionalAppend, ...] = ()
    final_append: str = Field(default="", alias="finalAppend")
    prefix: str = ""
    tab_title: str | TabTitle = Field(default="", alias="tabTitle")
    associated_containers: tuple[str | ContainerRef, ...] = Field(
        default=(),
        alias="associatedContainers",
    )
    refresh_config: RefreshConfig | None = Field(default=None, alias="refreshConfig")

    @field_validator("post_modifiers", "final_append", "prefix", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class CommandDefinition(_Document):
    section_id: str = Field(alias="sectionId")
    conditions: dict[str, Any] = Field(default_factory=dict)
    command: CommandTemplate


class SectionTree:
    """Lookup helper over the section documents."""

    def __init__(self, sections: Iterable[SectionDefinition]) -> None:
        self.sections: tuple[SectionDefinition, ...] = tuple(sections)
        self._top: dict[str, SectionDefinition] = {}
        self._subs: dict[str, tuple[SubSectionDefinition, SectionDefinition]] = {}
        for section in self.sections:
            self._top.setdefault(section.id, section)
            for sub in section.sub_sections:
                # Last declaration wins, matching a linear scan over the tree.
                self._subs[sub.id] = (sub, section)

    def section(self, section_id: str) -> SectionDefinition | None:
        return self._top.get(section_id)

    def sub_section(self, sub_section_id: str) -> tuple[SubSectionDefinition, SectionDefinition] | None:
        return self._subs.get(sub_section_id)

    def parent_of(self, sub_section_id: str) -> SectionDefinition | None:
        found = self._subs.get(sub_section_id)
        return found[1] if found else None

    def contains(self, element_id: str) -> bool:
        return element_id in self._top or element_id in self._subs


def parse_sections(raw: object) -> list[SectionDefinition]:
    """Validate an already-parsed section tree (a list, or ``{"sections": [...]}``)."""
    if isinstance(raw, dict):
        raw = raw.get("sections", [])
    if not isinstance(raw, list):
        raise StackRunnerError(
            "Section tree must be a list of sections.",
            code=ExitCode.CONFIG_ERROR,
            hint="Provide a JSON array or an object with a 'sections' array.",
        )
    try:
        return [SectionDefinition.model_validate(item) for item in raw]
    except ValidationError as exc:
        raise StackRunnerError(
            "Invalid section tree document.",
            code=ExitCode.CONFIG_ERROR,
            hint=str(exc.errors()[0].get("msg", "")) if exc.errors() else "",
        ) from exc


def parse_definitions(raw: object) -> list[CommandDefinition]:
    """Validate an already-parsed command catalogue (a JSON array of definitions)."""
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise StackRunnerError(
            "Command catalogue must be a list of definitions.",
            code=ExitCode.CONFIG_ERROR,
            hint="Provide a JSON array of command definitions.",
        )
    try:
        return [CommandDefinition.model_validate(item) for item in raw]
    except ValidationError as exc:
        raise StackRunnerError(
            "Invalid command catalogue document.",
            code=ExitCode.CONFIG_ERROR,
            hint=str(exc.errors()[0].get("msg", "")) if exc.errors() else "",
        ) from exc
