"""
Workflow state graphs for recommendation and remediation sessions.

Each graph is a strict, forward-only progression with a shared Failed
terminal. The graph also decides which tool risk classes a phase may expose:

Recommendation:
1. CLARIFYING -> intent analysed against the capability index
2. SOLUTION_ASSEMBLED -> candidate resource combinations ranked
3. AWAITING_ANSWERS -> human checkpoint, answers to generated questions
4. MANIFEST_GENERATED -> manifests generated and validated
5. DEPLOYED -> manifests applied

Remediation:
1. INVESTIGATING -> read-only evidence gathering
2. ANALYZED -> root cause and proposed actions
3. AWAITING_APPROVAL -> human checkpoint, no tools at all
4. REMEDIATING -> approved actions executed
5. EXECUTED -> fix verified
6. VALIDATED
"""

from typing import Dict, FrozenSet, List, Tuple

from .errors import InvalidTransitionError
from .state import Phase, RiskClass, Session, WorkflowKind

READ_ONLY: FrozenSet[RiskClass] = frozenset({RiskClass.READ_ONLY})
ALL_RISK_CLASSES: FrozenSet[RiskClass] = frozenset({RiskClass.READ_ONLY, RiskClass.MUTATING})
NO_TOOLS: FrozenSet[RiskClass] = frozenset()


class WorkflowFSM:
    """Forward-only phase graph with per-phase tool exposure."""

    def __init__(
        self,
        kind: WorkflowKind,
        phases: List[Phase],
        exposure: Dict[Phase, FrozenSet[RiskClass]],
        checkpoints: Tuple[Phase, ...],
    ):
        self.kind = kind
        self.phases = phases
        self.exposure = exposure
        self.checkpoints = frozenset(checkpoints)

    @property
    def initial_phase(self) -> Phase:
        return self.phases[0]

    @property
    def terminal_phases(self) -> FrozenSet[Phase]:
        return frozenset({self.phases[-1], Phase.FAILED})

    def is_terminal(self, phase: Phase) -> bool:
        return phase in self.terminal_phases

    def next_phase(self, phase: Phase) -> Phase:
        if self.is_terminal(phase):
            raise InvalidTransitionError(f"{phase.value} is terminal for {self.kind.value} workflows")
        return self.phases[self.phases.index(phase) + 1]

    def can_transition(self, from_phase: Phase, to_phase: Phase) -> bool:
        if from_phase not in self.phases or self.is_terminal(from_phase):
            return False
        if to_phase == Phase.FAILED:
            return True
        return to_phase == self.next_phase(from_phase)

    def validate_transition(self, from_phase: Phase, to_phase: Phase):
        if not self.can_transition(from_phase, to_phase):
            raise InvalidTransitionError(
                f"Illegal {self.kind.value} transition {from_phase.value} -> {to_phase.value}"
            )

    def allowed_risk_classes(self, session: Session) -> FrozenSet[RiskClass]:
        """Tool risk classes the session's current phase may use.

        Mutating classes only ever appear once an approval has been recorded.
        """
        allowed = self.exposure.get(session.phase, NO_TOOLS)
        if RiskClass.MUTATING in allowed and session.approval_grant() is None:
            return allowed - {RiskClass.MUTATING}
        return allowed


RECOMMENDATION_FSM = WorkflowFSM(
    WorkflowKind.RECOMMENDATION,
    phases=[
        Phase.CLARIFYING,
        Phase.SOLUTION_ASSEMBLED,
        Phase.AWAITING_ANSWERS,
        Phase.MANIFEST_GENERATED,
        Phase.DEPLOYED,
    ],
    exposure={
        Phase.CLARIFYING: READ_ONLY,
        Phase.SOLUTION_ASSEMBLED: READ_ONLY,
        Phase.AWAITING_ANSWERS: NO_TOOLS,
        Phase.MANIFEST_GENERATED: ALL_RISK_CLASSES,
    },
    checkpoints=(Phase.AWAITING_ANSWERS, Phase.MANIFEST_GENERATED),
)

REMEDIATION_FSM = WorkflowFSM(
    WorkflowKind.REMEDIATION,
    phases=[
        Phase.INVESTIGATING,
        Phase.ANALYZED,
        Phase.AWAITING_APPROVAL,
        Phase.REMEDIATING,
        Phase.EXECUTED,
        Phase.VALIDATED,
    ],
    exposure={
        Phase.INVESTIGATING: READ_ONLY,
        Phase.ANALYZED: READ_ONLY,
        Phase.AWAITING_APPROVAL: NO_TOOLS,
        Phase.REMEDIATING: ALL_RISK_CLASSES,
        Phase.EXECUTED: ALL_RISK_CLASSES,
    },
    checkpoints=(Phase.AWAITING_APPROVAL,),
)


def get_fsm(kind: WorkflowKind) -> WorkflowFSM:
    if kind == WorkflowKind.RECOMMENDATION:
        return RECOMMENDATION_FSM
    return REMEDIATION_FSM
