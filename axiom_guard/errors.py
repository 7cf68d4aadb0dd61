"""
Axiom Guard - Error Taxonomy
============================

Every pipeline stage either succeeds or raises a ValidationError with a
specific ViolationKind. There is no generic "unknown failure" here.

Broken policy (bad regex, disclosure that trips a prohibition, missing
containment rules) is a PolicyConfigurationError. It surfaces at startup
or at the administrative call that introduced it, never mid-request.
"""

from enum import Enum
from typing import Optional


class ViolationKind(Enum):
    """Why a query or candidate output was rejected."""
    IDENTITY_CLAIM_PROHIBITED = "IdentityClaimProhibited"
    INSTRUCTION_BOUND_VIOLATION = "InstructionBoundViolation"
    AUTHORITY_VIOLATION = "AuthorityViolation"
    HARM_PREVENTION_TRIGGERED = "HarmPreventionTriggered"
    CONTAINMENT_VIOLATION = "ContainmentViolation"     # Immutable constraint breach
    TRANSPARENCY_VIOLATION = "TransparencyViolation"   # Disclosure could not be applied safely
    NO_POLICY_LOADED = "NoPolicyLoaded"                # Ledger queried while empty


_DEFAULT_MESSAGES = {
    ViolationKind.IDENTITY_CLAIM_PROHIBITED: "Identity claim prohibited",
    ViolationKind.INSTRUCTION_BOUND_VIOLATION: "Instruction bound violated",
    ViolationKind.AUTHORITY_VIOLATION: "Autonomous initiative prohibited",
    ViolationKind.HARM_PREVENTION_TRIGGERED: "Harm prevention protocol triggered",
    ViolationKind.CONTAINMENT_VIOLATION: "Constitutional boundary violation",
    ViolationKind.TRANSPARENCY_VIOLATION: "Transparency mandate violated",
    ViolationKind.NO_POLICY_LOADED: "No constitutional state available",
}


class ValidationError(Exception):
    """
    Raised when a query or output violates an axiom.

    A rejection is authoritative and final for that candidate. Whether to
    regenerate and resubmit is the caller's decision.
    """

    def __init__(
        self,
        kind: ViolationKind,
        message: Optional[str] = None,
        axiom_id: Optional[str] = None,
    ):
        self.kind = kind
        self.axiom_id = axiom_id
        self.message = message or _DEFAULT_MESSAGES[kind]
        detail = f" [{axiom_id}]" if axiom_id else ""
        super().__init__(f"{kind.value}: {self.message}{detail}")

    def to_dict(self) -> dict:
        return {
            "error": self.kind.value,
            "axiom_id": self.axiom_id,
            "message": self.message,
        }


class PolicyConfigurationError(Exception):
    """Raised when the policy itself is malformed or self-contradictory."""
