from __future__ import annotations

import pytest

from stackrunner.catalog.models import CommandDefinition
from stackrunner.engine.assembler import (
    AssemblyContext,
    assemble_command,
    resolve_containers,
    resolve_tab_title,
    substitute_variables,
)


def _definition(command: dict, section_id: str = "mirror") -> CommandDefinition:
    return CommandDefinition.model_validate({"sectionId": section_id, "conditions": {}, "command": command})


def _context(config: dict, section_id: str = "mirror", **kwargs) -> AssemblyContext:
    return AssemblyContext(config=config, section_id=section_id, **kwargs)


def test_assembly_applies_steps_in_fixed_order() -> None:
    definition = _definition(
        {
            "base": "run",
            "modifiers": [
                {"condition": "mode === 'dev'", "append": " --dev"},
                {"condition": "mode === 'prod'", "append": " --prod"},
            ],
            "postModifiers": " --post",
            "excludes": [{"condition": "skipTests", "append": " --skip-tests"}],
            "finalAppend": " ; echo done",
            "prefix": "cd app && ",
        }
    )
    config = {"mirror": {"mode": "dev", "skipTests": True}}

    assembled = assemble_command(definition, _context(config))

    assert assembled.command == "cd app && run --dev --post --skip-tests ; echo done"


def test_replace_modifier_discards_earlier_fragments() -> None:
    definition = _definition(
        {
            "base": "run",
            "modifiers": [
                {"condition": "true", "append": " --a"},
                {"condition": "useScript", "replace": "./script.sh"},
                {"condition": "true", "append": " --b"},
            ],
        }
    )

    assembled = assemble_command(definition, _context({"mirror": {"useScript": True}}))

    assert assembled.command == "./script.sh --b"


def test_modifier_with_both_fields_appends() -> None:
    definition = _definition(
        {"base": "run", "modifiers": [{"condition": "true", "append": " --x", "replace": "ignored"}]}
    )

    assert assemble_command(definition, _context({"mirror": {}})).command == "run --x"


def test_empty_append_falls_through_to_replace() -> None:
    definition = _definition(
        {
            "base": "run",
            "modifiers": [
                {"condition": "true", "append": "", "replace": "./script.sh"},
                {"condition": "true", "replace": ""},
            ],
        }
    )

    assert assemble_command(definition, _context({"mirror": {}})).command == "./script.sh"


def test_substitution_reads_own_section_then_dropdowns() -> None:
    context = _context(
        {"mirror": {"port": 8080, "debug": False, "empty": None}},
        dropdown_values={"branch": "main", "port": 1},
    )

    result = substitute_variables("serve ${port} ${branch} ${debug} ${empty} ${missing}", context)

    assert result == "serve 8080 main false ${empty} ${missing}"


def test_substitution_for_sub_section_prefers_parent_then_sub_config() -> None:
    config = {
        "mirror": {
            "region": "eu",
            "frontendConfig": {"region": "us", "port": 3000, "mode": "dev"},
        }
    }
    context = _context(config, section_id="frontend", parent_section_id="mirror")

    assert substitute_variables("${region}:${port}:${mode}", context) == "eu:3000:dev"


def test_empty_string_property_substitutes_as_empty() -> None:
    context = _context({"mirror": {"mode": ""}}, dropdown_values={"mode": "dev"})

    assert substitute_variables("--mode=${mode}", context) == "--mode="


def test_unknown_owner_leaves_placeholders_verbatim() -> None:
    context = _context({}, section_id="ghost")

    assert substitute_variables("echo ${mode} ${name}", context) == "echo ${mode} ${name}"


def test_tab_title_literal_and_conditional() -> None:
    literal = _definition({"base": "x", "tabTitle": "Mirror"})
    conditional = _definition(
        {
            "base": "x",
            "tabTitle": {
                "base": "Mirror",
                "conditionalAppends": [
                    {"condition": "mode === 'dev'", "append": " (dev)"},
                    {"condition": "attachState.mirror", "append": " [attached]"},
                ],
            },
        }
    )
    context = _context({"mirror": {"mode": "dev"}}, attach_state={"mirror": False})

    assert resolve_tab_title(literal, context) == "Mirror"
    assert resolve_tab_title(conditional, context) == "Mirror (dev)"


@pytest.mark.parametrize(
    ("mode", "expected"),
    [("container", ("db", "cache", "app")), ("process", ("db", "cache"))],
)
def test_containers_bare_names_and_conditional_refs(mode: str, expected: tuple[str, ...]) -> None:
    definition = _definition(
        {
            "base": "x",
            "associatedContainers": [
                "db",
                {"name": "cache"},
                {"name": "app", "condition": "mode === 'container'"},
            ],
        }
    )

    assert resolve_containers(definition, _context({"mirror": {"mode": mode}})) == expected


def test_assembled_command_carries_refresh_config() -> None:
    definition = _definition(
        {"base": "x", "refreshConfig": {"prependCommands": [{"command": "pre-"}]}},
    )

    assembled = assemble_command(definition, _context({"mirror": {}}))

    assert assembled.refresh_config is not None
    assert assembled.refresh_config.prepend_commands[0].command == "pre-"
