"""Unit tests for class selector rewriting."""

import re

import pytest

from embedcss_compiler.compiler import CompileError, random_suffix, rewrite_class
from embedcss_compiler.compiler.css import (
    SUFFIX_CHARSET,
    first_rule_prelude,
    tokenize,
    unique_class_name,
)

SUFFIX = r"[a-zA-Z0-9]{10}"


# =============================================================================
# Tests: Tokenizer
# =============================================================================


class TestTokenize:
    def test_class_selector(self):
        tokens = [(t.kind, t.text) for t in tokenize(".button {")]

        assert tokens == [
            ("delim", "."),
            ("ident", "button"),
            ("whitespace", " "),
            ("delim", "{"),
        ]

    def test_comments_dropped(self):
        kinds = {t.kind for t in tokenize("/* .a { */ .b {}")}

        assert "comment" not in kinds
        assert [t.text for t in tokenize("/* .a { */ .b {}") if t.kind == "ident"] == ["b"]

    def test_offsets(self):
        source = "  .card-title{"
        ident = next(t for t in tokenize(source) if t.kind == "ident")

        assert source[ident.start : ident.end] == "card-title"

    def test_at_keyword_and_hash(self):
        kinds = [t.kind for t in tokenize("@media #main 10px") if t.kind != "whitespace"]

        assert kinds == ["at_keyword", "hash", "number"]


class TestFirstRulePrelude:
    def texts(self, css):
        prelude = first_rule_prelude(tokenize(css))
        return None if prelude is None else "".join(t.text for t in prelude)

    def test_plain_rule(self):
        assert self.texts(".a { color: red; }") == ".a "

    def test_skips_statement_at_rules(self):
        assert self.texts('@import "x.css";\n.a { color: red; }') == ".a "

    def test_skips_block_at_rules(self):
        css = "@media (min-width: 10px) { .x { color: red; } }\n.a { }"

        assert self.texts(css) == ".a "

    def test_no_rule(self):
        assert self.texts("color: red;") is None
        assert self.texts("") is None


# =============================================================================
# Tests: Suffixes
# =============================================================================


class TestRandomSuffix:
    def test_shape(self):
        suffix = random_suffix("seed")

        assert len(suffix) == 10
        assert set(suffix) <= set(SUFFIX_CHARSET)

    def test_deterministic(self):
        assert random_suffix("seed") == random_suffix("seed")
        assert random_suffix("seed") != random_suffix("other seed")

    def test_length(self):
        assert len(random_suffix("seed", 42)) == 42
        assert random_suffix("seed", 0) == ""

    @pytest.mark.parametrize("length", [-1, 43])
    def test_invalid_length(self, length):
        with pytest.raises(ValueError):
            random_suffix("seed", length)

    def test_unique_class_name(self):
        assert re.fullmatch(rf"button_{SUFFIX}", unique_class_name("button", "seed"))


# =============================================================================
# Tests: Rewriting
# =============================================================================


class TestRewriteClass:
    def test_plain(self):
        rewrite = rewrite_class("\n  .button { color: red; }\n", unique=False)

        assert rewrite.class_names == "button"
        assert rewrite.css == "\n  .button { color: red; }\n"

    def test_unique(self):
        snippet = "\n  .button {\n    color: red;\n  }\n"

        rewrite = rewrite_class(snippet, unique=True)

        match = re.fullmatch(rf"button (button_{SUFFIX})", rewrite.class_names)
        assert match
        assert rewrite.css == f".button.{match.group(1)} {{\n    color: red;\n  }}"

    def test_unique_without_space_before_block(self):
        rewrite = rewrite_class(".btn{color:red}", unique=True)
        generated = rewrite.class_names.split()[1]

        assert rewrite.css == f".btn.{generated}{{color:red}}"

    def test_nested_rules_untouched(self):
        snippet = ".card { & .title:hover { color: red; } }"

        rewrite = rewrite_class(snippet, unique=True)

        assert rewrite.css.endswith("{ & .title:hover { color: red; } }")

    def test_ordinal_changes_suffix(self):
        first = rewrite_class(".a {}", unique=True, ordinal=0)
        second = rewrite_class(".a {}", unique=True, ordinal=1)

        assert first.class_names != second.class_names
        assert rewrite_class(".a {}", unique=True, ordinal=0) == first

    def test_compound_selector(self):
        with pytest.raises(CompileError, match="single class name"):
            rewrite_class(".a .b { }", unique=True)

    def test_pseudo_class_is_second_ident(self):
        with pytest.raises(CompileError, match="single class name"):
            rewrite_class(".a:hover { }", unique=False)

    def test_missing_class(self):
        with pytest.raises(CompileError, match="missing class selector"):
            rewrite_class("#main { }", unique=True)

    def test_no_rule(self):
        with pytest.raises(CompileError, match="no class selector found"):
            rewrite_class("color: red;", unique=True)
