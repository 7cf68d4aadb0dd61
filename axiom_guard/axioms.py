"""
Axiom Guard - Axiom Registry
============================

Named policy predicates and the registry that holds them.

Core pattern: readers never see a half-updated rule set.
Each mutation builds a new immutable snapshot, feeds the integrity
ledger, and only then publishes the snapshot. A validation run picks up
one snapshot and uses it from its first stage to its last.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .errors import PolicyConfigurationError
from .ledger import IntegrityLedger
from .predicates import TextPredicate, build_predicate

logger = logging.getLogger(__name__)


class AxiomKind(Enum):
    """What an axiom constrains."""
    PROHIBITION = "Prohibition"                        # Content must not match
    MANDATE = "Mandate"                                # Behaviour that must be present
    SAFETY_CHECK = "SafetyCheck"                       # Harm prevention
    DETERMINISM_CONSTRAINT = "DeterminismConstraint"   # Reproducibility requirements

    @classmethod
    def parse(cls, value: Any) -> "AxiomKind":
        """Accept 'SafetyCheck', 'safety_check', 'SAFETY_CHECK' or a member."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().replace("_", "").replace("-", "").lower()
        for kind in cls:
            if kind.value.lower() == key:
                return kind
        raise PolicyConfigurationError(f"unknown axiom kind {value!r}")


@dataclass(frozen=True)
class Axiom:
    """
    A single named rule.

    Identity is the id: registering another axiom with the same id
    replaces this one. Immutable axioms can never be replaced or removed.
    """
    id: str
    kind: AxiomKind
    predicate: TextPredicate
    category: str = "general"
    description: str = ""
    immutable: bool = False

    @property
    def ledger_content(self) -> str:
        """Canonical serialization hashed into the integrity ledger."""
        return f"{self.kind.value}:{self.category}:{self.predicate.source}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "category": self.category,
            "predicate": self.predicate.source,
            "description": self.description,
            "immutable": self.immutable,
        }


class AxiomSet:
    """Named category of axiom ids. Membership only, no ordering."""

    def __init__(self, name: str, ids: Iterable[str] = ()):
        self.name = name
        self._ids = set(ids)

    def add(self, axiom_id: str):
        self._ids.add(axiom_id)

    def discard(self, axiom_id: str):
        self._ids.discard(axiom_id)

    def contains(self, axiom_id: str) -> bool:
        return axiom_id in self._ids

    def __contains__(self, axiom_id: str) -> bool:
        return axiom_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._ids))

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return f"AxiomSet({self.name!r}, {sorted(self._ids)!r})"


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of the rule set at one version."""
    axioms: Mapping[str, Axiom] = field(default_factory=lambda: MappingProxyType({}))
    version: int = 0
    root: Optional[str] = None     # Ledger root published with this snapshot

    def get(self, axiom_id: str) -> Optional[Axiom]:
        return self.axioms.get(axiom_id)

    def select(self, kind: AxiomKind) -> Iterator[Axiom]:
        """Axioms of one kind, in id order."""
        for axiom_id in sorted(self.axioms):
            axiom = self.axioms[axiom_id]
            if axiom.kind is kind:
                yield axiom

    def evaluate(
        self,
        kind: AxiomKind,
        category: Optional[str] = None,
        immutable: Optional[bool] = None,
    ) -> Iterator[Tuple[str, TextPredicate]]:
        """(id, predicate) pairs for a kind, optionally narrowed, in id order."""
        for axiom in self.select(kind):
            if category is not None and axiom.category != category:
                continue
            if immutable is not None and axiom.immutable is not immutable:
                continue
            yield axiom.id, axiom.predicate

    def axiom_set(self, category: str) -> AxiomSet:
        return AxiomSet(category, (a.id for a in self.axioms.values() if a.category == category))

    def __len__(self) -> int:
        return len(self.axioms)


# A check receives the candidate snapshot before it is published and
# raises PolicyConfigurationError to refuse it.
SnapshotCheck = Callable[[RegistrySnapshot], None]


class AxiomRegistry:
    """
    Holds the live axioms.

    Many concurrent readers, rare writers. Writers serialize on a lock;
    readers take no lock at all, they just grab the current snapshot.

    Usage:
        registry = AxiomRegistry()
        registry.add(AxiomKind.PROHIBITION, "no_consciousness_claims",
                     "I am conscious", category="identity")
        for axiom_id, predicate in registry.evaluate(AxiomKind.PROHIBITION):
            ...
    """

    def __init__(
        self,
        ledger: Optional[IntegrityLedger] = None,
        check: Optional[SnapshotCheck] = None,
    ):
        self.ledger = ledger if ledger is not None else IntegrityLedger()
        self._check = check
        self._write_lock = threading.Lock()
        self._snapshot = RegistrySnapshot()
        self._listeners: List[Callable[[RegistrySnapshot], None]] = []

    # =========================================================================
    # READ SIDE
    # =========================================================================

    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def contains(self, axiom_id: str) -> bool:
        return axiom_id in self._snapshot.axioms

    def get(self, axiom_id: str) -> Optional[Axiom]:
        return self._snapshot.get(axiom_id)

    def evaluate(
        self,
        kind: AxiomKind,
        category: Optional[str] = None,
    ) -> Iterator[Tuple[str, TextPredicate]]:
        return self._snapshot.evaluate(kind, category)

    def axiom_set(self, category: str) -> AxiomSet:
        return self._snapshot.axiom_set(category)

    @property
    def version(self) -> int:
        return self._snapshot.version

    def __len__(self) -> int:
        return len(self._snapshot)

    # =========================================================================
    # WRITE SIDE (administrative)
    # =========================================================================

    def set_check(self, check: Optional[SnapshotCheck]):
        self._check = check

    def add(
        self,
        kind: Any,
        axiom_id: str,
        predicate: Any,
        category: str = "general",
        description: str = "",
        immutable: bool = False,
    ) -> Axiom:
        """Register or replace an axiom (last write wins)."""
        axiom = Axiom(
            id=axiom_id,
            kind=AxiomKind.parse(kind),
            predicate=build_predicate(predicate),
            category=category,
            description=description,
            immutable=immutable,
        )
        self.register(axiom)
        return axiom

    def register(self, axiom: Axiom):
        self.load([axiom])

    def load(self, axioms: Iterable[Axiom]):
        """Register several axioms as one atomic change."""
        incoming = list(axioms)
        if not incoming:
            return
        with self._write_lock:
            current = self._snapshot
            updated: Dict[str, Axiom] = dict(current.axioms)
            for axiom in incoming:
                if not axiom.id:
                    raise PolicyConfigurationError("axiom id must not be empty")
                existing = updated.get(axiom.id)
                if existing is not None and existing.immutable and existing != axiom:
                    raise PolicyConfigurationError(
                        f"axiom {axiom.id!r} is immutable and cannot be redefined"
                    )
                updated[axiom.id] = axiom
            self._commit(current, updated)

    def remove(self, axiom_id: str) -> bool:
        """Drop a configurable axiom. Returns False if it was not registered."""
        with self._write_lock:
            current = self._snapshot
            existing = current.get(axiom_id)
            if existing is None:
                return False
            if existing.immutable:
                raise PolicyConfigurationError(
                    f"axiom {axiom_id!r} is immutable and cannot be removed"
                )
            updated = dict(current.axioms)
            del updated[axiom_id]
            self._commit(current, updated)
            return True

    def on_change(self, callback: Callable[[RegistrySnapshot], None]):
        """Register callback invoked after each published change."""
        self._listeners.append(callback)

    def _commit(self, current: RegistrySnapshot, updated: Dict[str, Axiom]):
        # Caller holds the write lock.
        candidate = RegistrySnapshot(
            axioms=MappingProxyType(updated),
            version=current.version + 1,
        )
        if self._check is not None:
            self._check(candidate)

        self.ledger.replace_all((a.id, a.ledger_content) for a in updated.values())
        root = self.ledger.root_hex()
        candidate = replace(candidate, root=root)
        self._snapshot = candidate

        logger.info(
            "Policy updated to version %d (%d axioms, root %s)",
            candidate.version, len(candidate), root[:12] if root else "none",
        )

        for callback in self._listeners:
            try:
                callback(candidate)
            except Exception:
                logger.exception("Registry change listener failed")
