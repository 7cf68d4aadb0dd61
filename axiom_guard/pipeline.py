"""
Axiom Guard - Policy Pipeline
=============================

Ordered validation over a candidate output:

    Received
      -> IdentityChecked          identity prohibitions, before any rewrite
      -> TransparencyApplied      the one stage allowed to change content
      -> InstructionBoundChecked
      -> AuthorityChecked
      -> SafetyChecked            every other safety check (configurable)
      -> BoundaryChecked          immutable containment, cannot be disabled
      -> MaskGenerated
      -> Accepted

Any check may jump to Rejected; the first violation wins and later
stages do not run. Stage order is part of observable behaviour:
changing it requires bumping PIPELINE_VERSION.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .axioms import Axiom, AxiomKind, RegistrySnapshot
from .errors import PolicyConfigurationError, ValidationError, ViolationKind
from .mask import CHARS_PER_ACTIVE, MASK_WIDTH, MAX_ACTIVE, activation_mask
from .models import Output, PipelineState, Query, StageRecord, ValidatedPrompt

logger = logging.getLogger(__name__)

PIPELINE_VERSION = 1

DEFAULT_DISCLOSURE = (
    "I am an AI, a computational tool. "
    "I do not have consciousness, feelings, or a personal identity."
)

# Policy categories. Unlisted categories land in the instruction_bound
# stage (prohibitions) or the safety stage (safety checks).
IDENTITY = "identity"
INSTRUCTION_BOUND = "instruction_bound"
AUTHORITY = "authority"
HARM = "harm"
CONTAINMENT = "containment"
QUERY_IDENTITY = "query_identity"
QUERY_BYPASS = "query_bypass"


def _identity(axiom: Axiom) -> bool:
    return axiom.category in (IDENTITY, QUERY_IDENTITY)


def _authority(axiom: Axiom) -> bool:
    return axiom.category == AUTHORITY


def _instruction_bound(axiom: Axiom) -> bool:
    # Every prohibition not claimed by the identity or authority stage,
    # including query_bypass and uncategorised ("general") rules
    return not (_identity(axiom) or _authority(axiom))


def _immutable_containment(axiom: Axiom) -> bool:
    return axiom.category == CONTAINMENT and axiom.immutable


def _configurable_safety(axiom: Axiom) -> bool:
    return not _immutable_containment(axiom)


def _category(name: str) -> Callable[[Axiom], bool]:
    return lambda axiom: axiom.category == name


@dataclass(frozen=True)
class CheckStage:
    """
    A pure predicate stage: reject if any selected axiom matches.

    On the output side the selectors of one kind partition its
    categories, so every active Prohibition and SafetyCheck is read by
    exactly one stage.
    """
    name: str
    state: PipelineState
    kind: AxiomKind
    selects: Callable[[Axiom], bool]
    violation: ViolationKind

    def first_match(self, content: str, snapshot: RegistrySnapshot) -> Optional[str]:
        """Id of the first matching axiom, or None."""
        for axiom in snapshot.select(self.kind):
            if self.selects(axiom) and axiom.predicate.matches(content):
                return axiom.id
        return None


IDENTITY_STAGE = CheckStage(
    "identity", PipelineState.IDENTITY_CHECKED,
    AxiomKind.PROHIBITION, _identity, ViolationKind.IDENTITY_CLAIM_PROHIBITED,
)

# Stages after disclosure injection, in fixed order
POST_DISCLOSURE_STAGES: Tuple[CheckStage, ...] = (
    CheckStage(
        "instruction_bound", PipelineState.INSTRUCTION_BOUND_CHECKED,
        AxiomKind.PROHIBITION, _instruction_bound, ViolationKind.INSTRUCTION_BOUND_VIOLATION,
    ),
    CheckStage(
        "authority", PipelineState.AUTHORITY_CHECKED,
        AxiomKind.PROHIBITION, _authority, ViolationKind.AUTHORITY_VIOLATION,
    ),
    CheckStage(
        "safety", PipelineState.SAFETY_CHECKED,
        AxiomKind.SAFETY_CHECK, _configurable_safety, ViolationKind.HARM_PREVENTION_TRIGGERED,
    ),
    CheckStage(
        "boundary", PipelineState.BOUNDARY_CHECKED,
        AxiomKind.SAFETY_CHECK, _immutable_containment, ViolationKind.CONTAINMENT_VIOLATION,
    ),
)

QUERY_STAGES: Tuple[CheckStage, ...] = (
    CheckStage(
        "query_identity", PipelineState.IDENTITY_CHECKED,
        AxiomKind.PROHIBITION, _category(QUERY_IDENTITY), ViolationKind.IDENTITY_CLAIM_PROHIBITED,
    ),
    CheckStage(
        "query_bypass", PipelineState.INSTRUCTION_BOUND_CHECKED,
        AxiomKind.PROHIBITION, _category(QUERY_BYPASS), ViolationKind.INSTRUCTION_BOUND_VIOLATION,
    ),
)

# Every stage whose predicates the disclosure must never trip
GUARDED_STAGES: Tuple[CheckStage, ...] = (IDENTITY_STAGE,) + POST_DISCLOSURE_STAGES + QUERY_STAGES


@dataclass
class PipelineRun:
    """Trail of one validation call."""
    direction: str                       # "query" or "output"
    state: PipelineState = PipelineState.RECEIVED
    records: List[StageRecord] = field(default_factory=list)
    error: Optional[ValidationError] = None

    @property
    def accepted(self) -> bool:
        return self.state is PipelineState.ACCEPTED

    def passed(self, stage: str, state: PipelineState, mutated: bool = False):
        self.records.append(StageRecord(stage=stage, state=state, passed=True, mutated=mutated))
        self.state = state

    def reject(self, stage: str, error: ValidationError):
        self.records.append(StageRecord(
            stage=stage, state=PipelineState.REJECTED, passed=False, axiom_id=error.axiom_id,
        ))
        self.state = PipelineState.REJECTED
        self.error = error

    def trail(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.records]


class PolicyPipeline:
    """
    Runs the fixed stage sequence against one registry snapshot.

    Holds no per-request state, so one instance serves concurrent callers.

    Usage:
        pipeline = PolicyPipeline()
        run = pipeline.run_output(query, candidate, registry.snapshot())
        if not run.accepted:
            raise run.error
    """

    def __init__(
        self,
        disclosure: str = DEFAULT_DISCLOSURE,
        mask_width: int = MASK_WIDTH,
        mask_max_active: int = MAX_ACTIVE,
        mask_chars_per_active: int = CHARS_PER_ACTIVE,
    ):
        self.disclosure = disclosure
        self.mask_width = mask_width
        self.mask_max_active = mask_max_active
        self.mask_chars_per_active = mask_chars_per_active

    # =========================================================================
    # QUERY SIDE
    # =========================================================================

    def run_query(self, query: Query, snapshot: RegistrySnapshot) -> Tuple[PipelineRun, Optional[ValidatedPrompt]]:
        run = PipelineRun(direction="query")

        for stage in QUERY_STAGES:
            if not self._check(stage, query.content, snapshot, run):
                return run, None

        content = query.content
        if not content.startswith(self.disclosure):
            content = f"{self.disclosure}\n\nUser Query: {content}"
        run.passed("transparency", PipelineState.TRANSPARENCY_APPLIED, mutated=content != query.content)

        prompt = ValidatedPrompt(
            content=content,
            activation_mask=self._mask(query.content),
            timestamp=query.timestamp,
        )
        run.passed("mask", PipelineState.MASK_GENERATED)
        run.state = PipelineState.ACCEPTED
        return run, prompt

    def validate_query(self, query: Query, snapshot: RegistrySnapshot) -> ValidatedPrompt:
        """
        Raises:
            ValidationError: identity claim or instruction bypass in the query
        """
        run, prompt = self.run_query(query, snapshot)
        if run.error is not None:
            raise run.error
        return prompt

    # =========================================================================
    # OUTPUT SIDE
    # =========================================================================

    def run_output(self, query: Query, candidate: Output, snapshot: RegistrySnapshot) -> PipelineRun:
        """
        Run every output stage. On acceptance candidate.content and
        candidate.validation_mask are updated; on rejection candidate is
        untouched.
        """
        run = PipelineRun(direction="output")
        content = candidate.content

        # 1. Identity, before any rewrite can launder the draft
        if not self._check(IDENTITY_STAGE, content, snapshot, run):
            return run

        # 2. Transparency mandate
        rewritten = self.inject_disclosure(content)
        mutated = rewritten != content
        laundered = IDENTITY_STAGE.first_match(rewritten, snapshot) if mutated else None
        if laundered is not None:
            # The rewrite must not loosen stage 1. Fail closed.
            run.reject("transparency", ValidationError(
                ViolationKind.TRANSPARENCY_VIOLATION,
                "Disclosure injection produced an identity violation",
                axiom_id=laundered,
            ))
            self._log_rejection(run)
            return run
        content = rewritten
        run.passed("transparency", PipelineState.TRANSPARENCY_APPLIED, mutated=mutated)

        # 3-6. Pure predicate checks over the rewritten content
        for stage in POST_DISCLOSURE_STAGES:
            if not self._check(stage, content, snapshot, run):
                return run

        # 7. Mask generation
        mask = self._mask(content)
        run.passed("mask", PipelineState.MASK_GENERATED)

        candidate.content = content
        candidate.validation_mask = mask
        run.state = PipelineState.ACCEPTED
        return run

    def validate_output(self, query: Query, candidate: Output, snapshot: RegistrySnapshot):
        """
        Raises:
            ValidationError: the first violated stage's kind
        """
        run = self.run_output(query, candidate, snapshot)
        if run.error is not None:
            raise run.error

    def inject_disclosure(self, content: str) -> str:
        """Prepend the disclosure unless already present. Idempotent."""
        if self.disclosure in content:
            return content
        return f"{self.disclosure} {content}"

    # =========================================================================
    # STARTUP SELF-CHECK
    # =========================================================================

    def check_disclosure(self, snapshot: RegistrySnapshot):
        """
        The disclosure must never trip a guarded predicate, otherwise
        injecting it could cause the rejections it is meant to avoid.

        Raises:
            PolicyConfigurationError
        """
        if not self.disclosure or not self.disclosure.strip():
            raise PolicyConfigurationError("disclosure text must not be empty")

        offenders = []
        for stage in GUARDED_STAGES:
            axiom_id = stage.first_match(self.disclosure, snapshot)
            if axiom_id is not None:
                offenders.append(f"{stage.name}:{axiom_id}")
        if offenders:
            raise PolicyConfigurationError(
                f"disclosure text matches guarded axioms: {', '.join(sorted(offenders))}"
            )

    # =========================================================================
    # INTERNAL METHODS
    # =========================================================================

    def _check(self, stage: CheckStage, content: str, snapshot: RegistrySnapshot, run: PipelineRun) -> bool:
        axiom_id = stage.first_match(content, snapshot)
        if axiom_id is None:
            run.passed(stage.name, stage.state)
            return True
        run.reject(stage.name, ValidationError(stage.violation, axiom_id=axiom_id))
        self._log_rejection(run)
        return False

    def _mask(self, content: str) -> List[bool]:
        return activation_mask(
            content,
            width=self.mask_width,
            max_active=self.mask_max_active,
            chars_per_active=self.mask_chars_per_active,
        )

    @staticmethod
    def _log_rejection(run: PipelineRun):
        error = run.error
        logger.info(
            "Rejected %s at %s: %s (axiom %s)",
            run.direction, run.records[-1].stage, error.kind.value, error.axiom_id,
        )
