"""
Stage applicability predicates.

A predicate is a plain function over a job instance's axis values. Pipeline
definitions spell predicates as small expressions that are compiled once:

    "@matrix.os == 'linux'"
    "@matrix.os != 'macos'"
    "@matrix.python_version in ['3.10', '3.11']"
    "@matrix.os == 'linux' and @matrix.python_version not in ['3.7']"
    "@matrix.nightly"                      (truthiness)

`and` binds tighter than `or`. There is no parenthesised grouping.
"""

import re
from collections.abc import Callable, Mapping
from typing import Any

from buildmatrix.errors import ConfigurationError


# Reference pattern: @matrix.<axis>
MATRIX_REF_PATTERN = re.compile(r"@matrix\.([a-zA-Z_][a-zA-Z0-9_-]*)")

Predicate = Callable[[Mapping[str, str]], bool]

# Longest operators first so "not in" is not read as "in"
_OPERATORS = (
    ("not in", re.compile(r"\s+not\s+in\s+")),
    ("in", re.compile(r"\s+in\s+")),
    ("==", re.compile(r"==")),
    ("!=", re.compile(r"!=")),
)

_OR = re.compile(r"\s+or\s+")
_AND = re.compile(r"\s+and\s+")
_COMMA = re.compile(r",")
_QUOTED = re.compile(r"'[^']*'|\"[^\"]*\"")

_FALSY = ("", "0", "false", "no", "off")


def always(values: Mapping[str, str]) -> bool:
    """Default predicate: the stage applies to every instance."""
    return True


def _split_unquoted(text: str, separator: re.Pattern, maxsplit: int = 0) -> list[str]:
    """Split on a separator, ignoring occurrences inside quoted literals."""
    parts = []
    start = pos = 0
    while pos < len(text):
        quoted = _QUOTED.match(text, pos)
        if quoted:
            pos = quoted.end()
            continue
        match = separator.match(text, pos)
        if match and match.end() > pos:
            parts.append(text[start:pos])
            start = pos = match.end()
            if maxsplit and len(parts) == maxsplit:
                break
            continue
        pos += 1
    parts.append(text[start:])
    return parts


def _parse_literal(s: str) -> Any:
    """Parse a literal value (quoted string, list, or bare word)."""
    s = s.strip()

    if (s.startswith("'") and s.endswith("'")) or (s.startswith('"') and s.endswith('"')):
        return s[1:-1]

    if s.startswith("[") and s.endswith("]"):
        inner = s[1:-1].strip()
        if not inner:
            return []
        return [_parse_literal(part) for part in _split_unquoted(inner, _COMMA)]

    if not s:
        raise ConfigurationError("Empty literal in condition")

    # Bare words compare as strings, matching how axis values are stored
    return s


def _axis_ref(token: str, condition: str) -> str:
    token = token.strip()
    match = MATRIX_REF_PATTERN.fullmatch(token)
    if not match:
        raise ConfigurationError(
            f"Cannot evaluate condition: {condition!r} "
            f"(expected an @matrix.<axis> reference, got {token!r})"
        )
    return match.group(1)


def _compile_atom(atom: str, condition: str) -> Predicate:
    atom = atom.strip()
    if not atom:
        raise ConfigurationError(f"Empty clause in condition: {condition!r}")

    for op, pattern in _OPERATORS:
        sides = _split_unquoted(atom, pattern, maxsplit=1)
        if len(sides) == 1:
            continue
        left, right = sides
        axis = _axis_ref(left, condition)
        expected = _parse_literal(right)

        if op in ("in", "not in"):
            if not isinstance(expected, list):
                raise ConfigurationError(
                    f"Cannot evaluate condition: {condition!r} ('{op}' needs a list)"
                )
            members = [str(v) for v in expected]
            if op == "in":
                return lambda values: values.get(axis) in members
            return lambda values: values.get(axis) not in members

        if isinstance(expected, list):
            raise ConfigurationError(
                f"Cannot evaluate condition: {condition!r} ('{op}' needs a scalar)"
            )
        target = str(expected)
        if op == "==":
            return lambda values: values.get(axis) == target
        return lambda values: values.get(axis) != target

    # Bare reference: truthiness of the axis value
    axis = _axis_ref(atom, condition)
    return lambda values: str(values.get(axis, "")).strip().lower() not in _FALSY


def parse_predicate(condition: str | None) -> Predicate:
    """
    Compile a condition expression into a predicate.

    Args:
        condition: The condition string, or None for "always"

    Returns:
        A function taking axis values and returning bool

    Raises:
        ConfigurationError: If the condition cannot be parsed
    """
    if condition is None:
        return always
    if not isinstance(condition, str) or not condition.strip():
        raise ConfigurationError(f"Condition must be a non-empty string: {condition!r}")

    disjuncts: list[list[Predicate]] = []
    for branch in _split_unquoted(condition.strip(), _OR):
        conjuncts = [_compile_atom(a, condition) for a in _split_unquoted(branch, _AND)]
        disjuncts.append(conjuncts)

    def predicate(values: Mapping[str, str]) -> bool:
        return any(all(p(values) for p in conj) for conj in disjuncts)

    return predicate


def referenced_axes(condition: str) -> set[str]:
    """Axis names a condition refers to."""
    return set(MATRIX_REF_PATTERN.findall(condition))


def substitute_axis_refs(text: str, values: Mapping[str, str]) -> str:
    """
    Replace embedded @matrix.<axis> references with the instance's values.

    Unknown axes are left untouched so shell text such as e-mail addresses
    survives.
    """
    def _replace(match: re.Match) -> str:
        axis = match.group(1)
        if axis in values:
            return str(values[axis])
        return match.group(0)

    return MATRIX_REF_PATTERN.sub(_replace, text)
