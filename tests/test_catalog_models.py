from __future__ import annotations

import pytest

from stackrunner.catalog import (
    CommandDefinition,
    ContainerRef,
    SectionDefinition,
    SectionTree,
    TabTitle,
    parse_definitions,
    parse_sections,
    sub_section_config_key,
)
from stackrunner.errors import ExitCode, StackRunnerError


@pytest.mark.parametrize(
    ("sub_id", "expected"),
    [("frontend", "frontendConfig"), ("backend-sub", "backendConfig"), ("sub-sub", "subConfig")],
)
def test_sub_section_config_key_strips_trailing_sub(sub_id: str, expected: str) -> None:
    assert sub_section_config_key(sub_id) == expected


def test_section_accepts_components_nesting_and_camel_case() -> None:
    section = SectionDefinition.model_validate(
        {
            "id": "mirror",
            "testSection": True,
            "components": {"subSections": [{"id": "frontend", "testSection": True}]},
        }
    )

    assert section.test_section is True
    assert [sub.id for sub in section.sub_sections] == ["frontend"]
    assert section.sub_sections[0].config_key == "frontendConfig"


def test_command_definition_parses_full_template() -> None:
    definition = CommandDefinition.model_validate(
        {
            "sectionId": "mirror",
            "conditions": {"enabled": True},
            "command": {
                "base": "run",
                "modifiers": [{"condition": "a", "replace": "other"}],
                "postModifiers": None,
                "finalAppend": "!",
                "tabTitle": {"base": "Mirror", "conditionalAppends": [{"condition": "a", "append": "+"}]},
                "associatedContainers": ["db", {"name": "cache", "condition": "a"}],
                "refreshConfig": {"appendCommands": [{"command": "-post", "condition": "c"}]},
            },
        }
    )

    template = definition.command
    assert template.post_modifiers == ""
    assert template.modifiers[0].append is None
    assert isinstance(template.tab_title, TabTitle)
    assert template.associated_containers == ("db", ContainerRef(name="cache", condition="a"))
    assert template.refresh_config is not None
    assert template.refresh_config.append_commands[0].command == "-post"


def test_documents_are_immutable() -> None:
    section = SectionDefinition(id="one")

    with pytest.raises(Exception):
        section.id = "two"  # type: ignore[misc]


def test_section_tree_lookups() -> None:
    tree = SectionTree(
        parse_sections({"sections": [{"id": "mirror", "subSections": [{"id": "frontend"}]}, {"id": "gopm"}]})
    )

    assert tree.section("gopm") is not None
    assert tree.section("frontend") is None
    assert tree.parent_of("frontend").id == "mirror"
    assert tree.contains("frontend")
    assert not tree.contains("ghost")


def test_parse_sections_rejects_non_list() -> None:
    with pytest.raises(StackRunnerError) as exc:
        parse_sections("mirror")

    assert exc.value.code == ExitCode.CONFIG_ERROR


def test_parse_definitions_wraps_validation_errors() -> None:
    with pytest.raises(StackRunnerError) as exc:
        parse_definitions([{"sectionId": "mirror"}])

    assert exc.value.code == ExitCode.CONFIG_ERROR
    assert exc.value.message == "Invalid command catalogue document."
