"""
Axiom Guard - Integrity Ledger
==============================

Merkle accumulator over the active axioms. The root digest is the
auditable fingerprint of "which policy is currently enforced".

Tree build (reproduced exactly by independent auditors):
- leaves are SHA-256(content) ordered by axiom id
- each level pairs adjacent nodes left-to-right, parent = SHA-256(left || right)
- an odd node out at the end of a level is promoted unchanged

The root therefore depends only on the current leaf set, never on the
order axioms were recorded in. The tree is rebuilt in full on every
mutation and the new root is published only once the rebuild completes.
"""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ValidationError, ViolationKind


def hash_leaf(content: str) -> bytes:
    return hashlib.sha256(content.encode("utf-8")).digest()


def combine(left: bytes, right: bytes) -> bytes:
    return hashlib.sha256(left + right).digest()


@dataclass(frozen=True)
class MerkleNode:
    """A tree node. Leaves carry the serialized axiom they were hashed from."""
    digest: bytes
    left: Optional["MerkleNode"] = None
    right: Optional["MerkleNode"] = None
    leaf_payload: Optional[str] = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None and self.right is None

    @property
    def hex(self) -> str:
        return self.digest.hex()


@dataclass(frozen=True)
class _Tree:
    root: Optional[MerkleNode]
    order: Tuple[str, ...]                      # Axiom ids in canonical leaf order
    levels: Tuple[Tuple[MerkleNode, ...], ...]  # levels[0] = leaves
    leaves: Mapping[str, MerkleNode]            # Published together with the root


_EMPTY = _Tree(root=None, order=(), levels=(), leaves=MappingProxyType({}))


def build_tree(leaves: Dict[str, MerkleNode]) -> _Tree:
    """Build the full tree from a leaf map. Canonical order is by axiom id."""
    if not leaves:
        return _EMPTY

    order = tuple(sorted(leaves))
    level: List[MerkleNode] = [leaves[axiom_id] for axiom_id in order]
    levels = [tuple(level)]

    while len(level) > 1:
        next_level: List[MerkleNode] = []
        for i in range(0, len(level), 2):
            if i + 1 < len(level):
                left, right = level[i], level[i + 1]
                next_level.append(MerkleNode(
                    digest=combine(left.digest, right.digest),
                    left=left,
                    right=right,
                ))
            else:
                next_level.append(level[i])  # Odd node promoted unchanged
        level = next_level
        levels.append(tuple(level))

    return _Tree(root=level[0], order=order, levels=tuple(levels), leaves=MappingProxyType(dict(leaves)))


class IntegrityLedger:
    """
    Tamper-evident record of the active policy.

    Usage:
        ledger = IntegrityLedger()
        ledger.record("no_identity_claims", "Prohibition:identity:literal:I am human")
        ledger.root_hex()                     # '3f1c...'
        ledger.verify("no_identity_claims", "...")   # True / False
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._tree: _Tree = _EMPTY

    # =========================================================================
    # MUTATION
    # =========================================================================

    def record(self, axiom_id: str, content: str):
        """Store or replace the leaf for axiom_id and rebuild the root."""
        with self._lock:
            leaves = dict(self._tree.leaves)
            leaves[axiom_id] = MerkleNode(digest=hash_leaf(content), leaf_payload=content)
            self._publish(leaves)

    def remove(self, axiom_id: str) -> bool:
        """Drop a leaf. Returns False if it was not recorded."""
        with self._lock:
            if axiom_id not in self._tree.leaves:
                return False
            leaves = dict(self._tree.leaves)
            del leaves[axiom_id]
            self._publish(leaves)
            return True

    def replace_all(self, entries: Iterable[Tuple[str, str]]):
        """Rebuild from a complete (axiom_id, content) set in one step."""
        leaves = {
            axiom_id: MerkleNode(digest=hash_leaf(content), leaf_payload=content)
            for axiom_id, content in entries
        }
        with self._lock:
            self._publish(leaves)

    def _publish(self, leaves: Dict[str, MerkleNode]):
        # Caller holds the lock. Root and leaves live in one tree object, so
        # readers see either the old pair or the new pair.
        tree = build_tree(leaves)
        self._tree = tree

    # =========================================================================
    # QUERIES
    # =========================================================================

    def root_digest(self) -> Optional[bytes]:
        """Current root, or None if nothing has been recorded."""
        root = self._tree.root
        return root.digest if root is not None else None

    def root_hex(self) -> Optional[str]:
        digest = self.root_digest()
        return digest.hex() if digest is not None else None

    def state_hash(self) -> str:
        """
        Hex root for audit callers.

        Raises:
            ValidationError(NO_POLICY_LOADED): the ledger is empty. A
            placeholder digest is never returned.
        """
        root = self.root_hex()
        if root is None:
            raise ValidationError(ViolationKind.NO_POLICY_LOADED)
        return root

    def verify(self, axiom_id: str, content: str) -> bool:
        """Does content hash to the leaf currently held for axiom_id?"""
        node = self._tree.leaves.get(axiom_id)
        if node is None:
            return False
        return node.digest == hash_leaf(content)

    def contains(self, axiom_id: str) -> bool:
        return axiom_id in self._tree.leaves

    def leaf_ids(self) -> List[str]:
        return list(self._tree.order)

    def __len__(self) -> int:
        return len(self._tree.leaves)

    # =========================================================================
    # INCLUSION PROOFS
    # =========================================================================

    def audit_path(self, axiom_id: str) -> List[Tuple[str, str]]:
        """
        Sibling digests from leaf to root as (side, hex) pairs, side being
        "L" or "R" for where the sibling sits. Levels where the node was
        promoted without a sibling contribute nothing.

        Raises:
            KeyError: axiom_id is not recorded.
        """
        tree = self._tree
        if axiom_id not in tree.order:
            raise KeyError(axiom_id)

        index = tree.order.index(axiom_id)
        path: List[Tuple[str, str]] = []
        for level in tree.levels[:-1]:
            if index % 2 == 0:
                if index + 1 < len(level):
                    path.append(("R", level[index + 1].hex))
            else:
                path.append(("L", level[index - 1].hex))
            index //= 2
        return path

    @staticmethod
    def verify_path(content: str, path: List[Tuple[str, str]], root_hex: str) -> bool:
        """Recompute a root from leaf content and an audit path."""
        digest = hash_leaf(content)
        for side, sibling_hex in path:
            sibling = bytes.fromhex(sibling_hex)
            if side == "L":
                digest = combine(sibling, digest)
            elif side == "R":
                digest = combine(digest, sibling)
            else:
                return False
        return digest.hex() == root_hex
