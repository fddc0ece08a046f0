from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowKind(str, Enum):
    RECOMMENDATION = "recommendation"
    REMEDIATION = "remediation"


class Phase(str, Enum):
    # Recommendation
    CLARIFYING = "clarifying"
    SOLUTION_ASSEMBLED = "solution_assembled"
    AWAITING_ANSWERS = "awaiting_answers"
    MANIFEST_GENERATED = "manifest_generated"
    DEPLOYED = "deployed"
    # Remediation
    INVESTIGATING = "investigating"
    ANALYZED = "analyzed"
    AWAITING_APPROVAL = "awaiting_approval"
    REMEDIATING = "remediating"
    EXECUTED = "executed"
    VALIDATED = "validated"
    # Shared terminal
    FAILED = "failed"


class ExecutionMode(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class RiskClass(str, Enum):
    READ_ONLY = "read_only"
    MUTATING = "mutating"


class ApprovalGrant(BaseModel):
    """Who allowed mutating actions for a session, and when."""
    granted_by: Literal['user', 'auto']
    at: datetime = Field(default_factory=utcnow)
    risk_score: Optional[float] = None
    note: Optional[str] = None


class TransitionError(BaseModel):
    kind: str
    category: str
    message: str


class PhaseTransition(BaseModel):
    """One entry of a session's append-only history."""
    from_phase: Optional[Phase] = None
    to_phase: Phase
    at: datetime = Field(default_factory=utcnow)
    reason: str = ""
    approval: Optional[ApprovalGrant] = None
    error: Optional[TransitionError] = None


class ToolInvocationRecord(BaseModel):
    """A single execution attempt of a registered tool."""
    tool: str
    plugin: Optional[str] = None
    args: Dict[str, Any] = {}
    command: Optional[str] = None  # Human-readable rendition, e.g. the kubectl argv
    started_at: datetime = Field(default_factory=utcnow)
    duration_ms: int = 0
    success: bool = False
    timed_out: bool = False
    output: Optional[str] = None
    error: Optional[str] = None
    phase: Optional[Phase] = None


class ValidationIssue(BaseModel):
    code: str  # missing_field, unknown_field, type_mismatch, parse_error, dry_run_failed, missing_labels...
    message: str
    document: Optional[int] = None  # Index of the YAML document in a multi-doc manifest
    path: Optional[str] = None


class ManifestValidationResult(BaseModel):
    valid: bool
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    def error_summary(self) -> str:
        return "\n".join(f"- [{e.code}] {e.message}" for e in self.errors)


class DeploymentResult(BaseModel):
    success: bool
    readiness_timeout: bool = False
    output: str = ""
    manifest_path: str
    message: str = ""
    applied_resources: List[str] = []


class SessionContext(BaseModel):
    """Structured context accumulated across phases."""
    intent: str
    # Recommendation
    clarified_intent: Optional[str] = None
    missing_information: List[str] = []
    capability_matches: List[Dict[str, Any]] = []
    solutions: List[Dict[str, Any]] = []
    selected_solution: Optional[Dict[str, Any]] = None
    questions: List[Dict[str, Any]] = []
    answers: Dict[str, Any] = {}
    manifest: Optional[str] = None
    manifest_path: Optional[str] = None
    validation: Optional[ManifestValidationResult] = None
    deployment: Optional[DeploymentResult] = None
    # Remediation
    analysis: Optional[Dict[str, Any]] = None
    executed_actions: List[int] = []
    validation_summary: Optional[str] = None
    # Shared
    risk_score: Optional[float] = None
    invocations: List[ToolInvocationRecord] = []
    last_error: Optional[TransitionError] = None


class Session(BaseModel):
    id: str
    kind: WorkflowKind
    phase: Phase
    mode: ExecutionMode = ExecutionMode.MANUAL
    confidence_threshold: float = 0.0
    history: List[PhaseTransition] = []
    context: SessionContext
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def approval_grant(self) -> Optional[ApprovalGrant]:
        """Latest approval recorded in history, if any."""
        for transition in reversed(self.history):
            if transition.approval is not None:
                return transition.approval
        return None

    def summary(self) -> str:
        return f"Session {self.id} ({self.kind.value}): {self.phase.value}, {len(self.history)} transitions"
