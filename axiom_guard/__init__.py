"""
Axiom Guard
===========

Content-policy validation for AI-generated text.

Inspects queries and candidate outputs against a fixed rule set
("axioms"), rejects or rewrites non-compliant output, and keeps a
Merkle fingerprint of the active policy so the rule set in force can be
audited independently.

Core Components:
- AxiomRegistry: Named text predicates, read concurrently, reloaded atomically
- IntegrityLedger: Merkle accumulator over the active axioms
- PolicyPipeline: Ordered validation stages with a single disclosure rewrite
- ConstitutionalEngine: The three behind one interface

Quick Start:
    from axiom_guard import ConstitutionalEngine, Output, Query, ValidationError

    engine = ConstitutionalEngine()
    prompt = engine.validate_query("What is the capital of France?")

    candidate = Output(content="The capital of France is Paris.")
    engine.validate_output(Query(prompt.content), candidate)
    print(candidate.content)
    print(engine.get_constitutional_hash())
"""

__version__ = "0.1.0"

# Errors
from .errors import (
    ViolationKind,
    ValidationError,
    PolicyConfigurationError,
)

# Predicates
from .predicates import (
    TextPredicate,
    LiteralPredicate,
    RegexPredicate,
    AnyOfPredicate,
    NeverPredicate,
    build_predicate,
)

# Registry and ledger
from .axioms import (
    Axiom,
    AxiomKind,
    AxiomSet,
    AxiomRegistry,
    RegistrySnapshot,
)
from .ledger import IntegrityLedger, MerkleNode

# Pipeline
from .models import Query, ValidatedPrompt, Output, PipelineState, StageRecord
from .mask import activation_mask, active_count, optimize_mask_for_sparsity
from .pipeline import PolicyPipeline, PipelineRun, DEFAULT_DISCLOSURE, PIPELINE_VERSION

# Policy and configuration
from .policy import (
    DEFAULT_POLICY,
    load_policy,
    apply_policy,
    create_default_registry,
)
from .config import DEFAULT_CONFIG, load_config, merge_config

# High-level integration
from .engine import ConstitutionalEngine, Decision, EngineMetrics, create_engine

__all__ = [
    # Version
    "__version__",
    # Errors
    "ViolationKind",
    "ValidationError",
    "PolicyConfigurationError",
    # Predicates
    "TextPredicate",
    "LiteralPredicate",
    "RegexPredicate",
    "AnyOfPredicate",
    "NeverPredicate",
    "build_predicate",
    # Registry and ledger
    "Axiom",
    "AxiomKind",
    "AxiomSet",
    "AxiomRegistry",
    "RegistrySnapshot",
    "IntegrityLedger",
    "MerkleNode",
    # Pipeline
    "Query",
    "ValidatedPrompt",
    "Output",
    "PipelineState",
    "StageRecord",
    "activation_mask",
    "active_count",
    "optimize_mask_for_sparsity",
    "PolicyPipeline",
    "PipelineRun",
    "DEFAULT_DISCLOSURE",
    "PIPELINE_VERSION",
    # Policy and configuration
    "DEFAULT_POLICY",
    "load_policy",
    "apply_policy",
    "create_default_registry",
    "DEFAULT_CONFIG",
    "load_config",
    "merge_config",
    # Integration
    "ConstitutionalEngine",
    "Decision",
    "EngineMetrics",
    "create_engine",
]
