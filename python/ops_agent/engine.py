"""
Session/Phase Engine.

Drives recommendation and remediation sessions through their workflow
graphs (see fsm.py). Each call to advance() runs phase steps under the
session's lock until the session reaches a checkpoint that needs caller
input, or a terminal phase. State is persisted after every step.

Step handlers do the work of the phase the session is in, then move it
forward:

Recommendation
  CLARIFYING          capability search + model clarification -> SOLUTION_ASSEMBLED
  SOLUTION_ASSEMBLED  scored solutions + questions             -> AWAITING_ANSWERS
  AWAITING_ANSWERS    answers (or defaults) + manifest loop    -> MANIFEST_GENERATED
  MANIFEST_GENERATED  deploy                                   -> DEPLOYED | FAILED

Remediation
  INVESTIGATING       read-only tool loop -> analysis          -> ANALYZED
  ANALYZED            risk score                               -> AWAITING_APPROVAL
  AWAITING_APPROVAL   approval (or auto)                       -> REMEDIATING | FAILED
  REMEDIATING         approved actions, one by one             -> EXECUTED
  EXECUTED            verification                             -> VALIDATED | FAILED
"""

import asyncio
import json
import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from . import config
from .backoff import BackoffConfig, with_retry
from .capabilities.index import CapabilityIndex
from .deploy import DeployOperation, manifest_path_for, safe_solution_id
from .errors import (
    InvalidInputError,
    InvalidTransitionError,
    ManifestConvergenceError,
    ModelResponseError,
    OpsAgentError,
    SessionExpiredError,
    SessionNotFoundError,
)
from .fsm import get_fsm
from .llm import ModelService
from .parsing import extract_yaml_block, parse_json_object
from .prompts import (
    CLARIFY_PROMPT,
    INVESTIGATE_PROMPT,
    MANIFEST_PROMPT,
    MANIFEST_REPAIR_PROMPT,
    QUESTIONS_PROMPT,
    SOLUTIONS_PROMPT,
    VERIFY_PROMPT,
)
from .session_store import SessionStore
from .state import (
    ApprovalGrant,
    ExecutionMode,
    Phase,
    PhaseTransition,
    Session,
    TransitionError,
    WorkflowKind,
)
from .tool_loop import ToolLoop, ToolLoopResult
from .tools.gateway import ToolGateway
from .validation import ManifestValidator

logger = logging.getLogger(__name__)

StepHandler = Callable[[Session, Optional[BaseModel]], Awaitable[bool]]


# --- caller payloads -------------------------------------------------------

class AnswersPayload(BaseModel):
    answers: Dict[str, Any] = {}


class DeployPayload(BaseModel):
    deploy: bool
    timeout: Optional[float] = Field(None, gt=0)
    note: Optional[str] = None


class ApprovalPayload(BaseModel):
    approve: bool
    note: Optional[str] = None


# --- risk ------------------------------------------------------------------

def remediation_risk_score(risk_level: str, confidence: float) -> float:
    """max(level score, 1 - confidence); unknown levels count as high."""
    level_score = config.RISK_LEVEL_SCORES.get(str(risk_level).lower(), config.RISK_LEVEL_SCORES['high'])
    return round(max(level_score, 1.0 - confidence), 3)


def recommendation_risk_score(solution_score: float) -> float:
    return round(1.0 - solution_score, 3)


def _clamp(value: Any, low: float = 0.0, high: float = 1.0) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return min(max(number, low), high)


def rank_solutions(raw: Any, margin: float = config.OPERATOR_PREFERENCE_MARGIN) -> List[Dict[str, Any]]:
    """Keep well-formed, scored solutions, best first.

    An operator-backed solution is moved ahead of a better-scored solution
    built from core primitives when it is within `margin` of it.
    """
    solutions = []
    for i, item in enumerate(raw if isinstance(raw, list) else []):
        if not isinstance(item, dict):
            continue
        score = _clamp(item.get("score"))
        resources = [r for r in item.get("resources") or [] if isinstance(r, dict) and r.get("kind")]
        if score is None or not resources:
            continue
        groups = [str(r.get("apiVersion", "")).rpartition('/')[0] for r in resources]
        solutions.append({
            **item,
            "id": safe_solution_id(item.get("id"), f"solution-{i + 1}"),
            "score": score,
            "resources": resources,
            "operator_backed": any(g not in config.CORE_API_GROUPS for g in groups),
        })

    solutions.sort(key=lambda s: s["score"], reverse=True)
    if solutions and not solutions[0]["operator_backed"]:
        best = solutions[0]["score"]
        preferred = next(
            (s for s in solutions if s["operator_backed"] and s["score"] >= best - margin),
            None,
        )
        if preferred is not None:
            solutions.remove(preferred)
            solutions.insert(0, preferred)
    return solutions


def normalize_questions(raw: Any) -> List[Dict[str, Any]]:
    questions = []
    for i, item in enumerate(raw if isinstance(raw, list) else []):
        if not isinstance(item, dict) or not item.get("question"):
            continue
        questions.append({
            "id": str(item.get("id") or f"q{i + 1}"),
            "question": str(item["question"]),
            "required": bool(item.get("required", True)),
            "default": item.get("default"),
        })
    return questions


def normalize_analysis(data: Dict[str, Any]) -> Dict[str, Any]:
    root_cause = data.get("root_cause")
    if not isinstance(root_cause, str) or not root_cause.strip():
        raise ModelResponseError("Investigation result has no root_cause")
    confidence = _clamp(data.get("confidence"))
    if confidence is None:
        raise ModelResponseError(f"Investigation result has an invalid confidence: {data.get('confidence')!r}")

    actions = []
    for item in data.get("actions") or []:
        if not isinstance(item, dict) or not isinstance(item.get("tool"), str):
            raise ModelResponseError(f"Malformed remediation action: {item!r}")
        args = item.get("args") or {}
        if not isinstance(args, dict):
            raise ModelResponseError(f"Arguments of action '{item['tool']}' must be an object")
        actions.append({"tool": item["tool"], "args": args, "description": str(item.get("description", ""))})

    return {
        "root_cause": root_cause.strip(),
        "confidence": confidence,
        "risk": str(data.get("risk", "high")).lower(),
        "actions": actions,
    }


class SessionEngine:
    def __init__(
        self,
        store: SessionStore,
        model: ModelService,
        gateway: ToolGateway,
        index: CapabilityIndex,
        validator: ManifestValidator,
        deployer: DeployOperation,
        tool_loop: Optional[ToolLoop] = None,
        max_manifest_attempts: int = config.MAX_MANIFEST_ATTEMPTS,
        max_solution_attempts: int = config.MAX_SOLUTION_ATTEMPTS,
        deploy_timeout: float = config.DEPLOY_TIMEOUT,
        tool_timeout: float = config.TOOL_TIMEOUT,
        retry_count: int = config.RETRY_COUNT,
        backoff: Optional[BackoffConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.model = model
        self.gateway = gateway
        self.index = index
        self.validator = validator
        self.deployer = deployer
        self.max_manifest_attempts = max_manifest_attempts
        self.max_solution_attempts = max_solution_attempts
        self.deploy_timeout = deploy_timeout
        self.tool_timeout = tool_timeout
        self.retry_count = retry_count
        self.backoff = backoff or BackoffConfig()
        self._sleep = sleep
        self.tool_loop = tool_loop or ToolLoop(
            model, gateway, tool_timeout=tool_timeout, retry_count=retry_count, backoff=self.backoff, sleep=sleep,
        )
        self._locks: Dict[str, asyncio.Lock] = {}
        self._steps: Dict[Phase, StepHandler] = {
            Phase.CLARIFYING: self._clarify,
            Phase.SOLUTION_ASSEMBLED: self._assemble_solutions,
            Phase.AWAITING_ANSWERS: self._collect_answers,
            Phase.MANIFEST_GENERATED: self._deploy,
            Phase.INVESTIGATING: self._investigate,
            Phase.ANALYZED: self._assess_risk,
            Phase.AWAITING_APPROVAL: self._await_approval,
            Phase.REMEDIATING: self._remediate,
            Phase.EXECUTED: self._verify,
        }

    # --- public operations ---------------------------------------------------

    def create_session(
        self,
        kind: Union[WorkflowKind, str],
        intent: str,
        mode: Union[ExecutionMode, str] = ExecutionMode.MANUAL,
        confidence_threshold: Optional[float] = None,
    ) -> Session:
        try:
            kind = WorkflowKind(kind)
            mode = ExecutionMode(mode)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        if not intent or not intent.strip():
            raise InvalidInputError("Intent must not be empty")
        if confidence_threshold is None:
            confidence_threshold = config.DEFAULT_CONFIDENCE_THRESHOLD
        if not 0.0 <= confidence_threshold <= 1.0:
            raise InvalidInputError(f"confidence_threshold must be within [0, 1], got {confidence_threshold}")

        fsm = get_fsm(kind)
        session = self.store.create(kind, intent.strip(), fsm.initial_phase, mode, confidence_threshold)
        session.history.append(PhaseTransition(to_phase=fsm.initial_phase, reason="session created"))
        return self.store.save(session)

    def get_session(self, session_id: str) -> Session:
        """Lock-free read of the last persisted state."""
        return self.store.get(session_id)

    def delete_session(self, session_id: str):
        if not self.store.delete(session_id):
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        self._locks.pop(session_id, None)

    def prune_expired(self) -> List[str]:
        pruned = self.store.prune_expired()
        for session_id in pruned:
            self._locks.pop(session_id, None)
        return pruned

    async def advance(self, session_id: str, payload: Optional[Dict[str, Any]] = None) -> Session:
        """Run the session forward until it needs input or finishes."""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            session = None
            try:
                session = self.store.get(session_id, allow_expired=True)
                return await self._run_steps(session, payload)
            finally:
                # Finished sessions never advance again; drop their lock
                if session is None or get_fsm(session.kind).is_terminal(session.phase):
                    self._locks.pop(session_id, None)

    async def _run_steps(self, session: Session, payload: Optional[Dict[str, Any]]) -> Session:
        fsm = get_fsm(session.kind)

        if session.is_expired():
            error = SessionExpiredError(f"Session '{session.id}' expired at {session.expires_at.isoformat()}")
            if not fsm.is_terminal(session.phase):
                self._fail(session, error)
                self.store.save(session, touch=False)
            raise error
        if fsm.is_terminal(session.phase):
            raise InvalidTransitionError(f"Session '{session.id}' already finished in {session.phase.value}")

        # Bad input is the caller's problem; the session stays where it is
        parsed = self._parse_payload(session, payload)

        try:
            while not fsm.is_terminal(session.phase):
                progressed = await self._steps[session.phase](session, parsed)
                parsed = None
                self.store.save(session)
                if not progressed:
                    break
        except Exception as e:
            logger.error(f"[engine] {session.id} failed in {session.phase.value}: {e}")
            self._fail(session, e)
            self.store.save(session)
            raise

        logger.info(f"[engine] {session.summary()}")
        return session

    # --- transitions ---------------------------------------------------------

    def _transition(
        self,
        session: Session,
        to_phase: Phase,
        reason: str,
        approval: Optional[ApprovalGrant] = None,
        error: Optional[TransitionError] = None,
    ):
        get_fsm(session.kind).validate_transition(session.phase, to_phase)
        session.history.append(PhaseTransition(
            from_phase=session.phase,
            to_phase=to_phase,
            reason=reason,
            approval=approval,
            error=error,
        ))
        logger.info(f"[engine] {session.id}: {session.phase.value} -> {to_phase.value} ({reason})")
        session.phase = to_phase

    def _record_approval(self, session: Session, grant: ApprovalGrant, reason: str):
        """Approval given at a checkpoint without leaving its phase."""
        session.history.append(PhaseTransition(
            from_phase=session.phase,
            to_phase=session.phase,
            reason=reason,
            approval=grant,
        ))
        logger.info(f"[engine] {session.id}: {reason} ({grant.granted_by})")

    def _fail(self, session: Session, exc: BaseException):
        if isinstance(exc, OpsAgentError):
            error = TransitionError(kind=exc.kind, category=exc.category, message=exc.message)
        else:
            error = TransitionError(kind=type(exc).__name__, category="internal", message=str(exc))
        session.context.last_error = error
        if not get_fsm(session.kind).is_terminal(session.phase):
            self._transition(session, Phase.FAILED, f"{error.kind}: {error.message}", error=error)

    # --- payloads ------------------------------------------------------------

    def _auto_applies(self, session: Session) -> bool:
        """Automatic mode may skip the current checkpoint."""
        if session.mode != ExecutionMode.AUTOMATIC:
            return False
        if session.phase == Phase.MANIFEST_GENERATED:
            grant = session.approval_grant()
            return grant is not None and grant.granted_by == 'auto'
        risk = session.context.risk_score
        if risk is None or risk >= session.confidence_threshold:
            return False
        if session.phase == Phase.AWAITING_ANSWERS:
            return all(q["default"] is not None for q in session.context.questions if q["required"])
        return session.phase == Phase.AWAITING_APPROVAL

    def _parse_payload(self, session: Session, payload: Optional[Dict[str, Any]]) -> Optional[BaseModel]:
        models = {
            Phase.AWAITING_ANSWERS: AnswersPayload,
            Phase.MANIFEST_GENERATED: DeployPayload,
            Phase.AWAITING_APPROVAL: ApprovalPayload,
        }
        model = models.get(session.phase)
        if model is None:
            return None
        if payload is None:
            if self._auto_applies(session):
                return None
            raise InvalidInputError(
                f"Session '{session.id}' is waiting in {session.phase.value}; "
                f"expected {model.__name__} fields {list(model.model_fields)}"
            )
        try:
            parsed = model.model_validate(payload)
        except ValidationError as e:
            raise InvalidInputError(
                f"Invalid input for {session.phase.value}: {e.error_count()} error(s)",
                detail={"errors": e.errors(include_url=False)},
            ) from e

        if isinstance(parsed, AnswersPayload):
            questions = {q["id"]: q for q in session.context.questions}
            unknown = sorted(set(parsed.answers) - set(questions))
            if unknown:
                raise InvalidInputError(f"Unknown question ids: {unknown}", detail={"unknown": unknown})
            missing = sorted(
                qid for qid, q in questions.items()
                if q["required"] and q["default"] is None and parsed.answers.get(qid) in (None, "")
            )
            if missing:
                raise InvalidInputError(f"Required questions unanswered: {missing}", detail={"missing": missing})
        if isinstance(parsed, DeployPayload) and not parsed.deploy:
            raise InvalidInputError("Nothing to do: set deploy to true to apply the generated manifest")
        return parsed

    # --- model helpers -------------------------------------------------------

    async def _ask(self, prompt: str) -> str:
        """Single model turn without tools."""
        response = await with_retry(
            lambda: self.model.send_message([{"role": "user", "content": prompt}], []),
            retry_count=self.retry_count,
            backoff=self.backoff,
            label="model request",
            sleep=self._sleep,
        )
        return response.content

    async def _run_loop(self, session: Session, prompt: str) -> ToolLoopResult:
        allowed = get_fsm(session.kind).allowed_risk_classes(session)
        result = await self.tool_loop.run(
            [{"role": "user", "content": prompt}],
            allowed,
            session=session,
        )
        session.context.invocations.extend(result.invocations)
        return result

    # --- recommendation steps ------------------------------------------------

    async def _clarify(self, session: Session, _payload: Optional[BaseModel]) -> bool:
        ctx = session.context
        matches = await self.index.search(ctx.intent)
        ctx.capability_matches = [m.summary() for m in matches]

        result = await self._run_loop(session, CLARIFY_PROMPT.format(
            intent=ctx.intent,
            matches=json.dumps(ctx.capability_matches, indent=2) if matches else "(no indexed resource types matched)",
        ))
        data = parse_json_object(result.content, "clarification")
        ctx.clarified_intent = str(data.get("clarified_intent") or ctx.intent)
        ctx.missing_information = [str(item) for item in data.get("missing_information") or []]

        self._transition(session, Phase.SOLUTION_ASSEMBLED, f"intent clarified against {len(matches)} capabilities")
        return True

    async def _assemble_solutions(self, session: Session, _payload: Optional[BaseModel]) -> bool:
        ctx = session.context
        prompt = SOLUTIONS_PROMPT.format(
            intent=ctx.clarified_intent or ctx.intent,
            missing=json.dumps(ctx.missing_information),
            matches=json.dumps(ctx.capability_matches, indent=2),
        )

        solutions: List[Dict[str, Any]] = []
        for attempt in range(1, self.max_solution_attempts + 1):
            result = await self._run_loop(session, prompt)
            try:
                solutions = rank_solutions(parse_json_object(result.content, "solutions").get("solutions"))
            except ModelResponseError as e:
                logger.warning(f"[engine] {session.id}: unusable solutions (attempt {attempt}): {e.message}")
                continue
            if solutions:
                break
            logger.warning(f"[engine] {session.id}: no scored solution (attempt {attempt})")
        if not solutions:
            raise ModelResponseError(f"No scored solution after {self.max_solution_attempts} attempts")

        ctx.solutions = solutions
        ctx.selected_solution = solutions[0]
        ctx.risk_score = recommendation_risk_score(solutions[0]["score"])

        questions_data = parse_json_object(await self._ask(QUESTIONS_PROMPT.format(
            intent=ctx.clarified_intent or ctx.intent,
            solution=json.dumps(ctx.selected_solution, indent=2),
            missing=json.dumps(ctx.missing_information),
        )), "questions")
        ctx.questions = normalize_questions(questions_data.get("questions"))

        self._transition(
            session,
            Phase.AWAITING_ANSWERS,
            f"selected '{ctx.selected_solution['id']}' (score {ctx.selected_solution['score']:.2f}) "
            f"from {len(solutions)} candidates",
        )
        return True

    async def _collect_answers(self, session: Session, payload: Optional[BaseModel]) -> bool:
        ctx = session.context
        defaults = {q["id"]: q["default"] for q in ctx.questions if q["default"] is not None}
        grant = None
        if payload is None:
            if not self._auto_applies(session):
                return False
            grant = ApprovalGrant(granted_by='auto', risk_score=ctx.risk_score)
            answers = defaults
            reason = f"defaults accepted automatically (risk {ctx.risk_score:.2f} < {session.confidence_threshold:.2f})"
        else:
            answers = {**defaults, **{k: v for k, v in payload.answers.items() if v not in (None, "")}}
            reason = f"{len(payload.answers)} answers received"
        ctx.answers = answers

        manifest = await self._generate_manifest(session)
        path = manifest_path_for(self.store.artifact_dir(session.id), ctx.selected_solution["id"])
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(manifest)
        ctx.manifest_path = path

        self._transition(session, Phase.MANIFEST_GENERATED, reason, approval=grant)
        return True

    async def _generate_manifest(self, session: Session) -> str:
        """generate -> validate -> repair, bounded."""
        ctx = session.context
        prompt = MANIFEST_PROMPT.format(
            intent=ctx.clarified_intent or ctx.intent,
            solution=json.dumps(ctx.selected_solution, indent=2),
            answers=json.dumps(ctx.answers, indent=2, default=str),
        )
        for attempt in range(1, self.max_manifest_attempts + 1):
            manifest = extract_yaml_block(await self._ask(prompt))
            validation = await with_retry(
                lambda: self.validator.validate(manifest),
                retry_count=self.retry_count,
                backoff=self.backoff,
                label="manifest validation",
                sleep=self._sleep,
            )
            ctx.manifest = manifest
            ctx.validation = validation
            if validation.valid:
                logger.info(f"[engine] {session.id}: manifest valid after {attempt} attempt(s)")
                return manifest
            logger.warning(
                f"[engine] {session.id}: manifest attempt {attempt} invalid ({len(validation.errors)} errors)"
            )
            prompt = MANIFEST_REPAIR_PROMPT.format(manifest=manifest, errors=validation.error_summary())

        raise ManifestConvergenceError(
            f"Manifest still invalid after {self.max_manifest_attempts} attempts",
            detail={"errors": [e.model_dump() for e in ctx.validation.errors]},
        )

    async def _deploy(self, session: Session, payload: Optional[BaseModel]) -> bool:
        ctx = session.context
        timeout = self.deploy_timeout
        if payload is None:
            if not self._auto_applies(session):
                return False
        else:
            timeout = payload.timeout or timeout
            grant = ApprovalGrant(granted_by='user', risk_score=ctx.risk_score, note=payload.note)
            self._record_approval(session, grant, "deployment approved")
            # The approval is on disk before anything touches the cluster
            self.store.save(session)

        result = await self.deployer.deploy(ctx.manifest_path, timeout=timeout, session=session)
        ctx.deployment = result

        if not result.success:
            error = TransitionError(kind="DeploymentFailed", category="internal", message=result.message)
            ctx.last_error = error
            self._transition(session, Phase.FAILED, f"deployment failed: {result.message}", error=error)
            return True

        reason = "applied and ready" if not result.readiness_timeout else f"applied; {result.message}"
        self._transition(session, Phase.DEPLOYED, reason)
        return True

    # --- remediation steps ---------------------------------------------------

    async def _investigate(self, session: Session, _payload: Optional[BaseModel]) -> bool:
        result = await self._run_loop(session, INVESTIGATE_PROMPT.format(intent=session.context.intent))
        analysis = normalize_analysis(parse_json_object(result.content, "investigation result"))
        session.context.analysis = analysis
        self._transition(
            session,
            Phase.ANALYZED,
            f"root cause identified (confidence {analysis['confidence']:.2f}, {len(analysis['actions'])} actions)",
        )
        return True

    async def _assess_risk(self, session: Session, _payload: Optional[BaseModel]) -> bool:
        analysis = session.context.analysis
        risk = remediation_risk_score(analysis["risk"], analysis["confidence"])
        session.context.risk_score = risk
        self._transition(session, Phase.AWAITING_APPROVAL, f"risk score {risk:.2f} ({analysis['risk']})")
        return True

    async def _await_approval(self, session: Session, payload: Optional[BaseModel]) -> bool:
        ctx = session.context
        if payload is None:
            if not self._auto_applies(session):
                return False
            grant = ApprovalGrant(granted_by='auto', risk_score=ctx.risk_score)
            reason = f"approved automatically (risk {ctx.risk_score:.2f} < {session.confidence_threshold:.2f})"
        elif payload.approve:
            grant = ApprovalGrant(granted_by='user', risk_score=ctx.risk_score, note=payload.note)
            reason = "approved by user"
        else:
            error = TransitionError(
                kind="RemediationRejected",
                category="precondition",
                message=payload.note or "Remediation rejected by user",
            )
            ctx.last_error = error
            self._transition(session, Phase.FAILED, "remediation rejected by user", error=error)
            return True

        self._transition(session, Phase.REMEDIATING, reason, approval=grant)
        return True

    async def _remediate(self, session: Session, _payload: Optional[BaseModel]) -> bool:
        ctx = session.context
        allowed = get_fsm(session.kind).allowed_risk_classes(session)
        actions = ctx.analysis["actions"]

        for i, action in enumerate(actions):
            if i in ctx.executed_actions:
                continue
            # Permission, unknown-tool and argument errors propagate and fail the session
            record = await self.gateway.invoke(
                action["tool"],
                action["args"],
                allowed,
                timeout=self.tool_timeout,
                session=session,
            )
            ctx.invocations.append(record)
            if not record.success:
                ctx.last_error = TransitionError(
                    kind="ToolTimeout" if record.timed_out else "ToolFailed",
                    category="timeout" if record.timed_out else "internal",
                    message=record.error or f"{action['tool']} failed",
                )
                logger.warning(f"[engine] {session.id}: action {i + 1}/{len(actions)} failed: {ctx.last_error.message}")
                # Stay in REMEDIATING; re-advancing retries the remaining actions
                return False
            ctx.executed_actions.append(i)
            self.store.save(session)

        ctx.last_error = None
        self._transition(session, Phase.EXECUTED, f"{len(actions)} actions executed")
        return True

    async def _verify(self, session: Session, _payload: Optional[BaseModel]) -> bool:
        ctx = session.context
        executed = [ctx.analysis["actions"][i] for i in ctx.executed_actions]
        result = await self._run_loop(session, VERIFY_PROMPT.format(
            intent=ctx.intent,
            root_cause=ctx.analysis["root_cause"],
            actions=json.dumps(executed, indent=2),
        ))
        data = parse_json_object(result.content, "verification result")
        ctx.validation_summary = str(data.get("summary", ""))

        if data.get("resolved") is True:
            self._transition(session, Phase.VALIDATED, "issue verified as resolved")
        else:
            error = TransitionError(
                kind="RemediationUnresolved",
                category="validation",
                message=ctx.validation_summary or "Issue still present after remediation",
            )
            ctx.last_error = error
            self._transition(session, Phase.FAILED, "issue not resolved", error=error)
        return True
