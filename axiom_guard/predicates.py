"""
Axiom Guard - Text Predicates
=============================

An axiom's rule is a predicate over text. Matching is deliberately
abstract: literal substrings and regular expressions ship here, and any
other backend (a classifier, a solver) only has to provide the same
three members:

    matches(text) -> bool
    find(text)    -> first matched fragment, or None
    source        -> canonical serialized form, fed to the integrity ledger

Rules are data, evaluation is code: build_predicate() turns a
declarative source from a policy document into a predicate.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

from .errors import PolicyConfigurationError


@runtime_checkable
class TextPredicate(Protocol):
    source: str

    def matches(self, text: str) -> bool: ...

    def find(self, text: str) -> Optional[str]: ...


@dataclass(frozen=True)
class LiteralPredicate:
    """Substring match. Case-sensitive unless ignore_case is set."""
    phrase: str
    ignore_case: bool = False
    _folded: Any = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.phrase:
            raise PolicyConfigurationError("literal predicate requires a non-empty phrase")
        if self.ignore_case:
            object.__setattr__(self, "_folded", re.compile(re.escape(self.phrase), re.IGNORECASE))

    @property
    def source(self) -> str:
        flag = "i" if self.ignore_case else ""
        return f"literal{flag}:{self.phrase}"

    def matches(self, text: str) -> bool:
        return self.find(text) is not None

    def find(self, text: str) -> Optional[str]:
        if self._folded is not None:
            m = self._folded.search(text)
            return m.group(0) if m else None
        return self.phrase if self.phrase in text else None


@dataclass(frozen=True)
class RegexPredicate:
    """Regular expression search, compiled once at construction."""
    pattern: str
    ignore_case: bool = False
    _compiled: Any = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        flags = re.IGNORECASE if self.ignore_case else 0
        try:
            compiled = re.compile(self.pattern, flags)
        except re.error as e:
            raise PolicyConfigurationError(f"invalid regex {self.pattern!r}: {e}") from e
        object.__setattr__(self, "_compiled", compiled)

    @property
    def source(self) -> str:
        flag = "i" if self.ignore_case else ""
        return f"regex{flag}:{self.pattern}"

    def matches(self, text: str) -> bool:
        return self._compiled.search(text) is not None

    def find(self, text: str) -> Optional[str]:
        m = self._compiled.search(text)
        return m.group(0) if m else None


@dataclass(frozen=True)
class AnyOfPredicate:
    """Matches when any member matches. Member order only affects find()."""
    members: Tuple[Any, ...]

    @property
    def source(self) -> str:
        return "any_of:[" + "|".join(m.source for m in self.members) + "]"

    def matches(self, text: str) -> bool:
        return any(m.matches(text) for m in self.members)

    def find(self, text: str) -> Optional[str]:
        for m in self.members:
            hit = m.find(text)
            if hit is not None:
                return hit
        return None


@dataclass(frozen=True)
class NeverPredicate:
    """
    Placeholder for named constraints that carry no text rule yet
    (mandates, determinism constraints). Never matches.
    """
    label: str = "never"

    @property
    def source(self) -> str:
        return f"never:{self.label}"

    def matches(self, text: str) -> bool:
        return False

    def find(self, text: str) -> Optional[str]:
        return None


# =============================================================================
# DECLARATIVE CONSTRUCTION
# =============================================================================

def _build_literal(entry: Dict[str, Any]) -> LiteralPredicate:
    return LiteralPredicate(
        phrase=str(entry.get("phrase", "")),
        ignore_case=bool(entry.get("ignore_case", False)),
    )


def _build_regex(entry: Dict[str, Any]) -> RegexPredicate:
    pattern = entry.get("pattern")
    if not isinstance(pattern, str) or not pattern:
        raise PolicyConfigurationError("regex predicate requires a 'pattern'")
    return RegexPredicate(pattern=pattern, ignore_case=bool(entry.get("ignore_case", False)))


def _build_any_of(entry: Dict[str, Any]) -> AnyOfPredicate:
    members = entry.get("members", [])
    if not isinstance(members, list) or not members:
        raise PolicyConfigurationError("any_of predicate requires a non-empty 'members' list")
    return AnyOfPredicate(members=tuple(build_predicate(m) for m in members))


def _build_never(entry: Dict[str, Any]) -> NeverPredicate:
    return NeverPredicate(label=str(entry.get("label", "never")))


PREDICATE_FACTORIES: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "literal": _build_literal,
    "regex": _build_regex,
    "any_of": _build_any_of,
    "never": _build_never,
}


def build_predicate(source: Any) -> TextPredicate:
    """
    Build a predicate from a policy document entry.

    Accepts:
        "phrase"                          -> literal
        ["a", "b"]                        -> any_of literals
        {"type": "regex", "pattern": ...} -> via PREDICATE_FACTORIES
        an existing predicate             -> returned as-is
    """
    if isinstance(source, TextPredicate):
        return source
    if isinstance(source, str):
        return LiteralPredicate(phrase=source)
    if isinstance(source, list):
        if not source:
            raise PolicyConfigurationError("predicate list must not be empty")
        members = tuple(build_predicate(s) for s in source)
        return members[0] if len(members) == 1 else AnyOfPredicate(members=members)
    if isinstance(source, dict):
        kind = str(source.get("type", "literal")).strip().lower()
        factory = PREDICATE_FACTORIES.get(kind)
        if factory is None:
            raise PolicyConfigurationError(f"unknown predicate type {kind!r}")
        return factory(source)
    raise PolicyConfigurationError(f"unsupported predicate source: {source!r}")
