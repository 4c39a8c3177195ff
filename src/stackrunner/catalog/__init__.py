"""Section tree and command catalogue documents."""

from .models import (
    CommandDefinition,
    CommandTemplate,
    ConditionalAppend,
    ContainerRef,
    Modifier,
    RefreshConfig,
    RefreshStep,
    SectionDefinition,
    SectionTree,
    SubSectionDefinition,
    TabTitle,
    parse_definitions,
    parse_sections,
    sub_section_config_key,
)

__all__ = [
    "CommandDefinition",
    "CommandTemplate",
    "ConditionalAppend",
    "ContainerRef",
    "Modifier",
    "RefreshConfig",
    "RefreshStep",
    "SectionDefinition",
    "SectionTree",
    "SubSectionDefinition",
    "TabTitle",
    "parse_definitions",
    "parse_sections",
    "sub_section_config_key",
]
