"""Condition evaluation and command generation."""

from .assembler import AssembledCommand, AssemblyContext, assemble_command
from .context import AttachState, ConfigState, build_condition_context, evaluate_condition
from .expression import ExpressionError, evaluate_expression, parse_expression
from .generator import CommandSpec, ErrorEntry, GeneratedEntry, generate_command_list

__all__ = [
    "AssembledCommand",
    "AssemblyContext",
    "AttachState",
    "CommandSpec",
    "ConfigState",
    "ErrorEntry",
    "ExpressionError",
    "GeneratedEntry",
    "assemble_command",
    "build_condition_context",
    "evaluate_condition",
    "evaluate_expression",
    "generate_command_list",
    "parse_expression",
]
