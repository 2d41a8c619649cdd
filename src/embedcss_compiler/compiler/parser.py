"""Source scanning for css`` template literals.

Replaces every css`` literal in a JS/TS module with a class name reference
and collects the styles:

    const button = css`
      .button { color: red; }
    `;

becomes

    const button = css.$("button button_Xk2Lq9PzA0")

    ;

The replacement keeps the literal's newlines so that line numbers of the
code after it do not move.
"""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel, ConfigDict, Field

from .css import rewrite_class

logger = logging.getLogger(__name__)

# import { css } from "embedcss" / import { a, css, b } from 'embedcss'
_IMPORT_RE = re.compile(
    r"""import\s*\{[\w,\s]*?\bcss\b[\w,\s]*\}\s*from\s*(?:"embedcss"|'embedcss')"""
)

LITERAL_OPEN = "css`"
LITERAL_CLOSE = "`"

# Preceding characters that mean the literal's value is used
_ASSIGNMENT_CHARS = frozenset("=:({")
_SKIPPED_CHARS = frozenset(" \t\r\n")


class CompilerOptions(BaseModel):
    """Options passed by the host as JSON: ``{"UniqueClassNames": true}``."""

    model_config = ConfigDict(populate_by_name=True)

    unique_class_names: bool = Field(default=False, alias="UniqueClassNames")


def imports_embedcss(code: str) -> bool:
    """Check whether the module imports ``css`` from embedcss."""
    return _IMPORT_RE.search(code) is not None


def is_assigned(code: str, literal_start: int) -> bool:
    """Check whether the literal starting at ``literal_start`` is used as a value.

    Unassigned literals (bare expression statements) are global styles.
    """
    for i in range(literal_start - 1, -1, -1):
        char = code[i]
        if char in _ASSIGNMENT_CHARS:
            return True
        if char not in _SKIPPED_CHARS:
            return False
    return False


def parse(code: str, options: CompilerOptions) -> tuple[str, str]:
    """Replace css`` literals and collect their styles.

    Args:
        code: JS/TS module source
        options: Compiler options

    Returns:
        (rewritten code, concatenated styles)

    Raises:
        CompileError: If an assigned literal has no valid class selector
    """
    if not imports_embedcss(code):
        return code, ""

    styles: list[str] = []
    ordinal = 0

    while True:
        start = code.find(LITERAL_OPEN)
        if start == -1:
            break
        content_start = start + len(LITERAL_OPEN)
        end = code.find(LITERAL_CLOSE, content_start)
        if end == -1:
            logger.debug("Unterminated css literal, leaving the rest of the module as is")
            break

        content = code[content_start:end]
        padding = "\n" * content.count("\n")

        if is_assigned(code, start):
            rewrite = rewrite_class(content, options.unique_class_names, ordinal)
            ordinal += 1
            class_names, css = rewrite.class_names, rewrite.css
        else:
            class_names, css = "", content

        code = f'{code[:start]}css.$("{class_names}"){padding}{code[end + 1 :]}'
        styles.append(css)

    return code, _join_styles(styles)


def _join_styles(styles: list[str]) -> str:
    # Each literal's styles are followed by a newline only if the styles of
    # the literals after it are non-empty
    joined = ""
    for css in reversed(styles):
        joined = f"{css}\n{joined}" if joined else css
    return joined
