"""CSS-in-JS compiler.

Rewrites css`` template literals in JS/TS modules into class name
references and extracts their styles. Reached through the `compile`
command of the stdio service.
"""

from .commands import COMPILE_COMMAND, CompileResult, compile_command, register_commands
from .css import ClassRewrite, CompileError, random_suffix, rewrite_class, unique_class_name
from .parser import CompilerOptions, parse

__all__ = [
    "COMPILE_COMMAND",
    "CompileError",
    "CompileResult",
    "CompilerOptions",
    "ClassRewrite",
    "compile_command",
    "register_commands",
    "parse",
    "rewrite_class",
    "random_suffix",
    "unique_class_name",
]
