"""Tests for specifier parsing and rule-content helpers."""

import pytest

from prpm.exceptions import InvalidSpecifierError
from prpm.utils import add_mdc_header
from prpm.utils import collection_key
from prpm.utils import has_mdc_header
from prpm.utils import parse_collection_spec
from prpm.utils import parse_package_spec
from prpm.utils import strip_author_namespace


@pytest.mark.parametrize(
    ("spec", "expected"),
    [
        ("react-rules", ("react-rules", None)),
        ("react-rules@1.2.0", ("react-rules", "1.2.0")),
        ("react-rules@latest", ("react-rules", None)),
        ("@prpm/pkg", ("@prpm/pkg", None)),
        ("@prpm/pkg@1.0.0", ("@prpm/pkg", "1.0.0")),
        ("author/my-skill@2.0.0", ("author/my-skill", "2.0.0")),
        ("  spaced@1.0.0  ", ("spaced", "1.0.0")),
    ],
)
def test_parse_package_spec(spec, expected):
    assert parse_package_spec(spec) == expected


@pytest.mark.parametrize("spec", ["", "@", "@scope", "@scope/", "pkg@"])
def test_parse_package_spec_invalid(spec):
    with pytest.raises(InvalidSpecifierError):
        parse_package_spec(spec)


@pytest.mark.parametrize(
    ("spec", "expected"),
    [
        ("starter", ("collection", "starter", None)),
        ("starter@1.0.0", ("collection", "starter", "1.0.0")),
        ("@collection/starter", ("collection", "starter", None)),
        ("@prpm/starter@2.1.0", ("prpm", "starter", "2.1.0")),
        ("prpm/starter", ("prpm", "starter", None)),
    ],
)
def test_parse_collection_spec(spec, expected):
    assert parse_collection_spec(spec) == expected


@pytest.mark.parametrize("spec", ["", "a/b/c", "@"])
def test_parse_collection_spec_invalid(spec):
    with pytest.raises(InvalidSpecifierError):
        parse_collection_spec(spec)


def test_collection_key():
    assert collection_key("collection", "starter") == "@collection/starter"


def test_strip_author_namespace():
    assert strip_author_namespace("@prpm/typescript-rules") == "typescript-rules"
    assert strip_author_namespace("author/my-skill") == "my-skill"
    assert strip_author_namespace("my-skill") == "my-skill"


@pytest.mark.parametrize(
    ("content", "expected"),
    [
        ("---\ndescription: x\n---\n# Rules", True),
        ("---\r\nalwaysApply: true\r\n---\r\n", True),
        ("\ufeff---\ndescription: x\n---\n", True),
        ("# Rules\n---\nmore", False),
        ("---\nunterminated", False),
        ("", False),
    ],
)
def test_has_mdc_header(content, expected):
    assert has_mdc_header(content) is expected


def test_add_mdc_header():
    content = add_mdc_header("# Rules", "React rules")

    assert content == '---\ndescription: "React rules"\nalwaysApply: false\n---\n\n# Rules'
    assert has_mdc_header(content)
