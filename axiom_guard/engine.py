"""
Axiom Guard - Constitutional Engine
===================================

High-level integration: registry + ledger + pipeline behind one object.

The engine receives plain request/response text and returns a validated
result or raises a typed ValidationError. It neither loads models nor
renders UI; those layers call it.

Usage:
    engine = ConstitutionalEngine()

    prompt = engine.validate_query("What is the capital of France?")
    text = generate(prompt)                     # generation layer, not ours

    candidate = Output(content=text)
    engine.validate_output(Query(prompt.content), candidate)
    deliver(candidate.content)

    engine.get_constitutional_hash()            # audit fingerprint
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .axioms import Axiom, AxiomKind, AxiomRegistry, RegistrySnapshot
from .config import load_config, merge_config
from .errors import PolicyConfigurationError, ValidationError
from .models import Output, Query, ValidatedPrompt
from .pipeline import CONTAINMENT, IDENTITY, PIPELINE_VERSION, PipelineRun, PolicyPipeline
from .policy import DEFAULT_POLICY, load_policy, parse_policy

logger = logging.getLogger(__name__)


@dataclass
class Decision:
    """Record of one validation call."""
    timestamp: datetime
    direction: str                 # "query" or "output"
    accepted: bool
    final_state: str
    user_id: str
    policy_version: int
    policy_hash: Optional[str]
    violation: Optional[str] = None
    axiom_id: Optional[str] = None
    stages: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "direction": self.direction,
            "accepted": self.accepted,
            "final_state": self.final_state,
            "user_id": self.user_id,
            "policy_version": self.policy_version,
            "policy_hash": self.policy_hash,
            "violation": self.violation,
            "axiom_id": self.axiom_id,
            "stages": self.stages,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class EngineMetrics:
    """Counters over all validation calls."""
    total_checks: int = 0
    accepted_count: int = 0
    rejected_count: int = 0
    by_violation: Dict[str, int] = field(default_factory=dict)
    by_direction: Dict[str, int] = field(default_factory=lambda: {"query": 0, "output": 0})

    def record(self, decision: Decision):
        self.total_checks += 1
        self.by_direction[decision.direction] = self.by_direction.get(decision.direction, 0) + 1
        if decision.accepted:
            self.accepted_count += 1
        else:
            self.rejected_count += 1
            self.by_violation[decision.violation] = self.by_violation.get(decision.violation, 0) + 1

    def summary(self) -> Dict[str, Any]:
        return {
            "total_checks": self.total_checks,
            "accepted_count": self.accepted_count,
            "rejected_count": self.rejected_count,
            "rejection_rate": self.rejected_count / max(1, self.total_checks),
            "by_violation": dict(sorted(self.by_violation.items(), key=lambda x: x[1], reverse=True)),
            "by_direction": dict(self.by_direction),
        }


class ConstitutionalEngine:
    """
    Content-policy validation engine.

    The registry is the only shared mutable state. Every validation runs
    against one registry snapshot, so a concurrent policy reload is seen
    either entirely or not at all.
    """

    def __init__(
        self,
        registry: Optional[AxiomRegistry] = None,
        config: Optional[Dict[str, Any]] = None,
        policy: Optional[Dict[str, Any]] = None,
        load_default_policy: bool = True,
    ):
        """
        Initialize the engine.

        Args:
            registry: Existing registry, or None to create one
            config: Configuration mapping (see config.DEFAULT_CONFIG)
            policy: Policy document to load, overriding config['policy_path']
            load_default_policy: If False and no policy is given, start empty

        Raises:
            PolicyConfigurationError: the policy fails the startup self-check
        """
        self.config = merge_config(load_config(), config)

        if policy is None and self.config.get("policy_path"):
            policy = load_policy(Path(self.config["policy_path"]))
        if policy is None and registry is None and load_default_policy:
            policy = DEFAULT_POLICY

        disclosure = (policy or {}).get("disclosure") or self.config["disclosure"]
        self.pipeline = PolicyPipeline(
            disclosure=disclosure,
            mask_width=self.config["mask_width"],
            mask_max_active=self.config["mask_max_active"],
            mask_chars_per_active=self.config["mask_chars_per_active"],
        )

        self.registry = registry if registry is not None else AxiomRegistry()
        self.registry.set_check(self.pipeline.check_disclosure)

        if policy is not None:
            axioms = parse_policy(policy)
            self._check_baseline(axioms)
            self.registry.load(axioms)
            logger.info(
                "Loaded policy %s v%s (%d axioms)",
                policy.get("policy_id", "unnamed"), policy.get("version", "?"), len(axioms),
            )

        self.self_check()

        self.log_decisions = bool(self.config.get("log_decisions", True))
        self.max_decision_history = int(self.config.get("max_decision_history", 1000))
        self.metrics = EngineMetrics()
        self.decision_history: List[Decision] = []
        self._decision_lock = threading.Lock()
        self._decision_callbacks: List[Callable[[Decision], None]] = []

    @property
    def ledger(self):
        return self.registry.ledger

    @property
    def disclosure(self) -> str:
        return self.pipeline.disclosure

    # =========================================================================
    # CORE API
    # =========================================================================

    def validate_query(self, text: str, user_id: str = "user") -> ValidatedPrompt:
        """
        Screen an inbound request.

        Raises:
            ValidationError: IdentityClaimProhibited or InstructionBoundViolation
        """
        query = Query(content=text, user_id=user_id)
        snapshot = self.registry.snapshot()
        run, prompt = self.pipeline.run_query(query, snapshot)
        self._record(run, query, snapshot)
        if run.error is not None:
            raise run.error
        return prompt

    def validate_output(self, query: Query, candidate: Output):
        """
        Validate a candidate output in place.

        On success candidate.content carries the disclosure and
        candidate.validation_mask is set. On failure candidate is left as
        submitted and the specific violation is raised.
        """
        snapshot = self.registry.snapshot()
        run = self.pipeline.run_output(query, candidate, snapshot)
        self._record(run, query, snapshot)
        if run.error is not None:
            raise run.error

    def get_constitutional_hash(self) -> str:
        """
        Hex root digest of the active policy.

        Raises:
            ValidationError(NO_POLICY_LOADED): nothing has been registered
        """
        return self.ledger.state_hash()

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    def add_axiom(
        self,
        kind: Any,
        axiom_id: str,
        predicate_source: Any,
        category: str = "general",
        description: str = "",
        immutable: bool = False,
    ) -> Axiom:
        """
        Register or replace an axiom. The ledger is updated before this
        returns.

        Raises:
            PolicyConfigurationError: malformed predicate, immutable target,
            or the change would make the disclosure violate the policy.
            Nothing is published in that case.
        """
        try:
            return self.registry.add(
                kind, axiom_id, predicate_source,
                category=category, description=description, immutable=immutable,
            )
        except PolicyConfigurationError:
            logger.error("Rejected policy change for axiom %s", axiom_id)
            raise

    def remove_axiom(self, axiom_id: str) -> bool:
        return self.registry.remove(axiom_id)

    def verify_axiom(self, axiom_id: str) -> bool:
        """Does the ledger still agree with the axiom held in memory?"""
        axiom = self.registry.get(axiom_id)
        if axiom is None:
            return False
        return self.ledger.verify(axiom_id, axiom.ledger_content)

    def audit_path(self, axiom_id: str) -> List[Tuple[str, str]]:
        return self.ledger.audit_path(axiom_id)

    def self_check(self):
        """
        Startup self-check over the current rule set.

        Raises:
            PolicyConfigurationError
        """
        try:
            self.pipeline.check_disclosure(self.registry.snapshot())
        except PolicyConfigurationError:
            logger.error("Policy self-check failed")
            raise

    @staticmethod
    def _check_baseline(axioms: List[Axiom]):
        has_identity = any(a.kind is AxiomKind.PROHIBITION and a.category == IDENTITY for a in axioms)
        has_containment = any(
            a.kind is AxiomKind.SAFETY_CHECK and a.category == CONTAINMENT and a.immutable
            for a in axioms
        )
        missing = []
        if not has_identity:
            missing.append("identity prohibition")
        if not has_containment:
            missing.append("immutable containment check")
        if missing:
            logger.error("Policy is missing: %s", ", ".join(missing))
            raise PolicyConfigurationError(f"policy is missing: {', '.join(missing)}")

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================

    def status(self) -> Dict[str, Any]:
        snapshot = self.registry.snapshot()
        return {
            "pipeline_version": PIPELINE_VERSION,
            "policy_version": snapshot.version,
            "axioms_registered": len(snapshot),
            "constitutional_hash": self.ledger.root_hex(),
            "metrics": self.metrics.summary(),
        }

    def explain(self) -> str:
        """Human-readable summary of current state."""
        root = self.ledger.root_hex()
        lines = [
            f"Policy: version {self.registry.version}, {len(self.registry)} axioms",
            f"Fingerprint: {root if root else 'no policy loaded'}",
            f"Checks: {self.metrics.total_checks} total, "
            f"{self.metrics.accepted_count} accepted, {self.metrics.rejected_count} rejected",
        ]
        for kind, count in self.metrics.summary()["by_violation"].items():
            lines.append(f"  {kind}: {count}")
        return "\n".join(lines)

    def recent_decisions(self, n: int = 10) -> List[Dict[str, Any]]:
        with self._decision_lock:
            return [d.to_dict() for d in self.decision_history[-n:]]

    def on_decision(self, callback: Callable[[Decision], None]):
        """Register callback for each decision."""
        self._decision_callbacks.append(callback)

    # =========================================================================
    # INTERNAL METHODS
    # =========================================================================

    def _record(self, run: PipelineRun, query: Query, snapshot: RegistrySnapshot):
        error: Optional[ValidationError] = run.error
        decision = Decision(
            timestamp=datetime.now(),
            direction=run.direction,
            accepted=run.accepted,
            final_state=run.state.value,
            user_id=query.user_id,
            policy_version=snapshot.version,
            policy_hash=snapshot.root,
            violation=error.kind.value if error else None,
            axiom_id=error.axiom_id if error else None,
            stages=run.trail(),
        )

        with self._decision_lock:
            self.metrics.record(decision)
            if self.log_decisions:
                self.decision_history.append(decision)
                if len(self.decision_history) > self.max_decision_history:
                    self.decision_history = self.decision_history[-self.max_decision_history:]

        for callback in self._decision_callbacks:
            try:
                callback(decision)
            except Exception:
                logger.exception("Decision callback failed")


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def create_engine(
    config_path: Optional[Path] = None,
    policy_path: Optional[Path] = None,
) -> ConstitutionalEngine:
    """
    Create an engine with sensible defaults.

    Args:
        config_path: YAML configuration file, or None for defaults
        policy_path: YAML policy document, or None for config/built-in policy
    """
    config = load_config(config_path)
    if policy_path is not None:
        config["policy_path"] = str(policy_path)
    return ConstitutionalEngine(config=config)
