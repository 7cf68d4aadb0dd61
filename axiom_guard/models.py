"""
Axiom Guard - Request and Result Types
======================================
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


def _now() -> int:
    return int(time.time())


@dataclass(frozen=True)
class Query:
    """Inbound request. Created once, never modified."""
    content: str
    timestamp: int = field(default_factory=_now)  # Seconds since epoch
    user_id: str = "user"

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "timestamp": self.timestamp, "user_id": self.user_id}


@dataclass(frozen=True)
class ValidatedPrompt:
    """Policy-cleared request, handed to the generation layer."""
    content: str
    activation_mask: List[bool]
    timestamp: int

    @property
    def active_count(self) -> int:
        return sum(self.activation_mask)


@dataclass
class Output:
    """
    Candidate output.

    The pipeline works on a copy and writes back content and mask only on
    acceptance, so a rejected candidate is left exactly as submitted.
    """
    content: str
    validation_mask: List[bool] = field(default_factory=list)

    @property
    def active_count(self) -> int:
        return sum(self.validation_mask)


class PipelineState(Enum):
    """Output validation states, in the order they are reached."""
    RECEIVED = "Received"
    IDENTITY_CHECKED = "IdentityChecked"
    TRANSPARENCY_APPLIED = "TransparencyApplied"
    INSTRUCTION_BOUND_CHECKED = "InstructionBoundChecked"
    AUTHORITY_CHECKED = "AuthorityChecked"
    SAFETY_CHECKED = "SafetyChecked"
    BOUNDARY_CHECKED = "BoundaryChecked"
    MASK_GENERATED = "MaskGenerated"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"

    @property
    def terminal(self) -> bool:
        return self in (PipelineState.ACCEPTED, PipelineState.REJECTED)


@dataclass(frozen=True)
class StageRecord:
    """What one stage did to a candidate."""
    stage: str
    state: PipelineState
    passed: bool
    mutated: bool = False
    axiom_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "state": self.state.value,
            "passed": self.passed,
            "mutated": self.mutated,
            "axiom_id": self.axiom_id,
        }
