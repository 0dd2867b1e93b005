"""Tests for stage applicability predicates."""

import pytest

from buildmatrix.errors import ConfigurationError
from buildmatrix.predicates import (
    always,
    parse_predicate,
    referenced_axes,
    substitute_axis_refs,
)
from buildmatrix.schemas import AxisValues


LINUX_37 = AxisValues.of(os="linux", python_version="3.7")
MACOS_311 = AxisValues.of(os="macos", python_version="3.11")


class TestParsePredicate:
    def test_none_is_always(self):
        assert parse_predicate(None) is always
        assert always(LINUX_37) is True

    def test_equality(self):
        p = parse_predicate("@matrix.os == 'linux'")
        assert p(LINUX_37) is True
        assert p(MACOS_311) is False

    def test_inequality(self):
        p = parse_predicate("@matrix.os != 'macos'")
        assert p(LINUX_37) is True
        assert p(MACOS_311) is False

    def test_bare_word_compares_as_string(self):
        p = parse_predicate("@matrix.os == linux")
        assert p(LINUX_37) is True

    def test_membership(self):
        p = parse_predicate("@matrix.python_version in ['3.10', '3.11']")
        assert p(MACOS_311) is True
        assert p(LINUX_37) is False

    def test_negated_membership(self):
        p = parse_predicate("@matrix.python_version not in ['3.7']")
        assert p(LINUX_37) is False
        assert p(MACOS_311) is True

    def test_and_binds_tighter_than_or(self):
        p = parse_predicate(
            "@matrix.os == 'linux' and @matrix.python_version == '3.8' or @matrix.os == 'macos'"
        )
        assert p(MACOS_311) is True
        assert p(LINUX_37) is False
        assert p(AxisValues.of(os="linux", python_version="3.8")) is True

    @pytest.mark.parametrize("condition, target", [
        ("@matrix.target == 'linux or mac'", "linux or mac"),
        ('@matrix.target == "x and y"', "x and y"),
        ("@matrix.target == 'a != b'", "a != b"),
        ("@matrix.target in ['built in', 'a,b']", "a,b"),
    ])
    def test_connectives_inside_quotes_are_literal(self, condition, target):
        p = parse_predicate(condition)
        assert p(AxisValues.of(target=target)) is True
        assert p(AxisValues.of(target="linux")) is False

    def test_quoted_literal_with_connective_combines(self):
        p = parse_predicate("@matrix.target == 'linux or mac' or @matrix.os == 'macos'")
        assert p(AxisValues.of(target="linux or mac", os="linux")) is True
        assert p(AxisValues.of(target="linux", os="macos")) is True
        assert p(AxisValues.of(target="linux", os="linux")) is False

    def test_truthiness(self):
        p = parse_predicate("@matrix.nightly")
        assert p(AxisValues.of(nightly="true")) is True
        assert p(AxisValues.of(nightly="false")) is False
        assert p(AxisValues.of(nightly="0")) is False

    def test_missing_axis_never_matches_equality(self):
        p = parse_predicate("@matrix.arch == 'x86_64'")
        assert p(LINUX_37) is False

    @pytest.mark.parametrize("condition", [
        "",
        "   ",
        "os == 'linux'",
        "@matrix.os in 'linux'",
        "@matrix.os == ['linux']",
        "@matrix.os ==",
    ])
    def test_invalid_conditions_raise(self, condition):
        with pytest.raises(ConfigurationError):
            parse_predicate(condition)


class TestReferencedAxes:
    def test_collects_every_reference(self):
        condition = "@matrix.os == 'linux' and @matrix.python_version in ['3.7']"
        assert referenced_axes(condition) == {"os", "python_version"}


class TestSubstituteAxisRefs:
    def test_embedded_reference(self):
        assert substitute_axis_refs("python@matrix.python_version -V", LINUX_37) == "python3.7 -V"

    def test_several_references(self):
        assert substitute_axis_refs("@matrix.os/@matrix.python_version", LINUX_37) == "linux/3.7"

    def test_hyphen_continues_the_axis_name(self):
        text = "build-@matrix.os-py@matrix.python_version"
        assert substitute_axis_refs(text, LINUX_37) == "build-@matrix.os-py3.7"

    def test_unknown_axis_is_left_untouched(self):
        assert substitute_axis_refs("mail ci@matrix.example", LINUX_37) == "mail ci@matrix.example"
