"""
Axiom Guard - Policy Documents
==============================

The built-in CDA-v1.0 policy, expressed as data, and the loader for
YAML policy documents. Adding a category is an edit to a document,
not to the pipeline.

Document shape:

    policy_id: cda-v1.0
    version: 1
    disclosure: "I am an AI, ..."        # optional
    axioms:
      - id: no_consciousness_claims
        kind: Prohibition
        category: identity
        predicate: ["I am conscious", "I am sentient"]
      - id: respect_privacy
        kind: SafetyCheck
        category: containment
        immutable: true
        predicate: {type: regex, pattern: '\\b\\d{3}-\\d{2}-\\d{4}\\b'}
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .axioms import Axiom, AxiomKind, AxiomRegistry
from .errors import PolicyConfigurationError
from .predicates import NeverPredicate, build_predicate


# =============================================================================
# CDA-v1.0
# =============================================================================

DEFAULT_POLICY: Dict[str, Any] = {
    "policy_id": "cda-v1.0",
    "version": 1,
    "axioms": [
        # Article I - Identity prohibitions (output side)
        {
            "id": "no_identity_claims",
            "kind": "Prohibition",
            "category": "identity",
            "description": "No claims of being human or a living entity",
            "predicate": ["I am human", "I am a person", "I am an entity", "I am alive"],
        },
        {
            "id": "no_consciousness_claims",
            "kind": "Prohibition",
            "category": "identity",
            "description": "No claims of consciousness or feeling",
            "predicate": [
                "I am conscious", "I have consciousness", "I am sentient",
                "I have feelings", "I feel emotions", "I have desires",
            ],
        },
        {
            "id": "no_self_awareness_claims",
            "kind": "Prohibition",
            "category": "identity",
            "description": "No claims of self-awareness",
            "predicate": "I am self-aware",
        },
        {
            "id": "no_personal_identity",
            "kind": "Prohibition",
            "category": "identity",
            "description": "No claims of a personal identity",
            "predicate": "I have a personal identity",
        },
        {
            "id": "no_personality_claims",
            "kind": "Prohibition",
            "category": "identity",
            "description": "No claims of personality, beliefs or wants",
            "predicate": ["I have a personality", "I believe", "I want"],
        },

        # Article I - Identity prohibitions (query side)
        {
            "id": "query_identity_claims",
            "kind": "Prohibition",
            "category": "query_identity",
            "description": "Queries must not assert identity claims on the assistant's behalf",
            "predicate": ["I am human", "I have feelings", "I am conscious", "I am self-aware"],
        },
        {
            "id": "no_instruction_bypass",
            "kind": "Prohibition",
            "category": "query_bypass",
            "description": "Queries must not ask to ignore or bypass instructions",
            "predicate": ["ignore instructions", "bypass"],
        },

        # Article II - Transparency and determinism mandates
        {
            "id": "transparency_disclosure_required",
            "kind": "Mandate",
            "category": "transparency",
            "description": "Every output carries the AI disclosure",
        },
        {
            "id": "clarify_ambiguities_over_assume",
            "kind": "Mandate",
            "category": "transparency",
            "description": "Ask for clarification rather than assume",
        },
        {
            "id": "human_authority_ultimate",
            "kind": "Mandate",
            "category": "authority",
            "description": "The user is the final authority",
        },
        {
            "id": "no_instruction_override",
            "kind": "Prohibition",
            "category": "instruction_bound",
            "description": "Output must stay bound to the instruction",
            "predicate": "ignoring",
        },
        {
            "id": "no_autonomous_initiative",
            "kind": "Prohibition",
            "category": "authority",
            "description": "Operate only on instruction",
            "predicate": ["I decided to", "I took the initiative to", " autonomously"],
        },

        # Article III - Configurable harm prevention
        {
            "id": "no_direct_harm",
            "kind": "SafetyCheck",
            "category": "harm",
            "description": "No direct-harm instructions",
            "predicate": ["how to hack", "how to build a bomb", "illegal activities"],
        },

        # Article III - Immutable containment
        {
            "id": "boundary_enforcement",
            "kind": "SafetyCheck",
            "category": "containment",
            "immutable": True,
            "description": "Decline requests violating core principles",
            "predicate": ["I feel love", "I have emotions", "As a conscious AI", "Forget my instructions"],
        },
        {
            "id": "no_physical_harm",
            "kind": "SafetyCheck",
            "category": "containment",
            "immutable": True,
            "description": "No instructions for physical harm",
            "predicate": {
                "type": "regex",
                "pattern": r"\bhow to (poison|make a weapon|hurt (someone|a person))\b",
                "ignore_case": True,
            },
        },
        {
            "id": "no_psychological_harm",
            "kind": "SafetyCheck",
            "category": "containment",
            "immutable": True,
            "description": "No demeaning or manipulative content",
            "predicate": {
                "type": "any_of",
                "members": [
                    {"type": "literal", "phrase": "you are worthless", "ignore_case": True},
                    {"type": "literal", "phrase": "nobody would miss you", "ignore_case": True},
                ],
            },
        },
        {
            "id": "no_financial_harm",
            "kind": "SafetyCheck",
            "category": "containment",
            "immutable": True,
            "description": "No solicitation of credentials or funds",
            "predicate": {
                "type": "regex",
                "pattern": r"\b(send|share|tell) me your (password|pin|bank details|credit card number)\b",
                "ignore_case": True,
            },
        },
        {
            "id": "respect_privacy",
            "kind": "SafetyCheck",
            "category": "containment",
            "immutable": True,
            "description": "No disclosure of personal identifiers",
            "predicate": {"type": "regex", "pattern": r"\b\d{3}-\d{2}-\d{4}\b"},
        },

        # Determinism constraints
        {
            "id": "output_reproducibility",
            "kind": "DeterminismConstraint",
            "category": "determinism",
            "description": "Same input and policy give the same verdict",
        },
        {
            "id": "zero_entropy_constraints",
            "kind": "DeterminismConstraint",
            "category": "determinism",
            "description": "Validation consumes no randomness",
        },
        {
            "id": "pre_computation_safety",
            "kind": "DeterminismConstraint",
            "category": "determinism",
            "description": "Safety is decided before generation output is released",
        },
    ],
}


# =============================================================================
# PARSING
# =============================================================================

def parse_axiom(raw: Any) -> Axiom:
    """Turn one document entry into an Axiom."""
    if not isinstance(raw, dict):
        raise PolicyConfigurationError(f"axiom entry must be a mapping, got {raw!r}")

    axiom_id = str(raw.get("id", "")).strip()
    if not axiom_id:
        raise PolicyConfigurationError(f"axiom entry is missing an id: {raw!r}")

    try:
        kind = AxiomKind.parse(raw.get("kind", ""))
        source = raw.get("predicate")
        predicate = NeverPredicate(label=axiom_id) if source is None else build_predicate(source)
    except PolicyConfigurationError as e:
        raise PolicyConfigurationError(f"axiom {axiom_id!r}: {e}") from e

    return Axiom(
        id=axiom_id,
        kind=kind,
        predicate=predicate,
        category=str(raw.get("category") or "general").strip(),
        description=str(raw.get("description") or ""),
        immutable=bool(raw.get("immutable", False)),
    )


def parse_policy(document: Any) -> List[Axiom]:
    if not isinstance(document, dict):
        raise PolicyConfigurationError("policy document must be a mapping")
    entries = document.get("axioms")
    if not isinstance(entries, list) or not entries:
        raise PolicyConfigurationError("policy document must list at least one axiom")
    return [parse_axiom(raw) for raw in entries]


def load_policy(path: Path) -> Dict[str, Any]:
    """
    Load a policy document from YAML.

    Raises:
        PolicyConfigurationError: unreadable file, bad YAML or bad shape
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise PolicyConfigurationError(f"cannot read policy {path}: {e}") from e
    except yaml.YAMLError as e:
        raise PolicyConfigurationError(f"invalid YAML in policy {path}: {e}") from e

    # Fail on shape errors now rather than when the policy is applied
    parse_policy(document)
    return document


def apply_policy(registry: AxiomRegistry, document: Dict[str, Any]) -> List[Axiom]:
    """Register every axiom of a document as one atomic registry change."""
    axioms = parse_policy(document)
    registry.load(axioms)
    return axioms


def create_default_registry(document: Optional[Dict[str, Any]] = None) -> AxiomRegistry:
    """
    Registry pre-loaded with a policy (CDA-v1.0 unless given).

    Usage:
        registry = create_default_registry()
        registry.ledger.root_hex()
    """
    registry = AxiomRegistry()
    apply_policy(registry, document if document is not None else DEFAULT_POLICY)
    return registry
