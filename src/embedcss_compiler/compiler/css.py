"""Class selector rewriting for css`` literals.

Each assigned literal defines one style class: the first qualified rule of
the snippet must select a single class name. With unique class names enabled
the selector gets a second, generated class appended, so that

    .button { color: red; }

becomes

    .button.button_Xk2Lq9PzA0 { color: red; }

and the element is given both classes: "button button_Xk2Lq9PzA0".
"""

from __future__ import annotations

import hashlib
import re
import string
from dataclasses import dataclass
from typing import NamedTuple

from ..protocol import CommandError

SUFFIX_CHARSET = string.ascii_lowercase + string.ascii_uppercase + string.digits
SUFFIX_LENGTH = 10

# sha256 gives 256 bits; log2(62) ~ 5.95 bits per character
_MAX_SUFFIX_LENGTH = 42

_TOKEN_RE = re.compile(
    r"""
      (?P<comment>/\*.*?\*/)
    | (?P<whitespace>\s+)
    | (?P<string>"(?:[^"\\\n]|\\.)*"|'(?:[^'\\\n]|\\.)*')
    | (?P<hash>\#(?:[\w-]|[^\x00-\x7f]|\\.)+)
    | (?P<at_keyword>@-?(?:[a-zA-Z_]|[^\x00-\x7f])(?:[\w-]|[^\x00-\x7f])*)
    | (?P<ident>-?(?:[a-zA-Z_]|[^\x00-\x7f]|\\.)(?:[\w-]|[^\x00-\x7f]|\\.)*)
    | (?P<number>[+-]?(?:\d+\.?\d*|\.\d+)(?:[a-zA-Z%]+)?)
    | (?P<delim>.)
    """,
    re.VERBOSE | re.DOTALL,
)


class CompileError(CommandError):
    """The source could not be compiled."""


class Token(NamedTuple):
    kind: str
    text: str
    start: int
    end: int


@dataclass(frozen=True)
class ClassRewrite:
    """Result of rewriting one css`` literal.

    Attributes:
        class_names: Space-separated class list for the element
        css: Stylesheet text to emit
    """

    class_names: str
    css: str


def tokenize(css: str) -> list[Token]:
    """Split CSS text into tokens, comments dropped."""
    return [
        Token(match.lastgroup or "delim", match.group(), match.start(), match.end())
        for match in _TOKEN_RE.finditer(css)
        if match.lastgroup != "comment"
    ]


def first_rule_prelude(tokens: list[Token]) -> list[Token] | None:
    """Return the prelude tokens of the first top-level qualified rule.

    At-rules (with or without a block) are skipped. Returns None if the
    text holds no complete qualified rule.
    """
    i = 0
    while i < len(tokens):
        token = tokens[i]

        if token.kind == "whitespace" or token.text in (";", "}"):
            i += 1
            continue

        if token.kind == "at_keyword":
            i = _skip_at_rule(tokens, i + 1)
            continue

        prelude: list[Token] = []
        while i < len(tokens) and tokens[i].text != "{":
            prelude.append(tokens[i])
            i += 1
        if i == len(tokens):
            return None
        return prelude

    return None


def _skip_at_rule(tokens: list[Token], i: int) -> int:
    depth = 0
    while i < len(tokens):
        text = tokens[i].text
        if text == "{":
            depth += 1
        elif text == "}":
            depth -= 1
            if depth <= 0:
                return i + 1
        elif text == ";" and depth == 0:
            return i + 1
        i += 1
    return i


def random_suffix(seed: str, length: int = SUFFIX_LENGTH) -> str:
    """Deterministic alphanumeric string derived from ``seed``."""
    if length < 0:
        raise ValueError("length cannot be negative")
    if length > _MAX_SUFFIX_LENGTH:
        raise ValueError(f"length cannot exceed {_MAX_SUFFIX_LENGTH}")

    number = int.from_bytes(hashlib.sha256(seed.encode("utf-8")).digest(), "big")
    chars = []
    for _ in range(length):
        number, index = divmod(number, len(SUFFIX_CHARSET))
        chars.append(SUFFIX_CHARSET[index])
    return "".join(chars)


def unique_class_name(class_name: str, seed: str) -> str:
    return f"{class_name}_{random_suffix(seed)}"


def rewrite_class(snippet: str, unique: bool, ordinal: int = 0) -> ClassRewrite:
    """Rewrite the class selector of one css`` literal.

    Args:
        snippet: Literal content
        unique: Append a generated class to the selector
        ordinal: Position of the literal within its source file; identical
            snippets at different positions get different class names

    Raises:
        CompileError: If the first rule does not select a single class
    """
    prelude = first_rule_prelude(tokenize(snippet))
    if prelude is None:
        raise CompileError("no class selector found in the CSS snippet")

    idents = [token for token in prelude if token.kind == "ident"]
    if not idents:
        raise CompileError("invalid class name: missing class selector")
    if len(idents) > 1:
        raise CompileError("invalid class name: selector must be a single class name")

    class_token = idents[0]
    if not unique:
        return ClassRewrite(class_names=class_token.text, css=snippet)

    generated = unique_class_name(class_token.text, f"Seed({ordinal}):{snippet}")
    css = snippet[: class_token.end] + "." + generated + snippet[class_token.end :]
    return ClassRewrite(class_names=f"{class_token.text} {generated}", css=css.strip())
