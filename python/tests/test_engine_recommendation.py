import os

import pytest

from ops_agent.capabilities import CapabilityIndex, InMemoryVectorStore
from ops_agent.deploy import DeployOperation
from ops_agent.engine import SessionEngine, normalize_questions, rank_solutions
from ops_agent.errors import (
    InvalidInputError,
    ManifestConvergenceError,
    ModelResponseError,
    SessionNotFoundError,
)
from ops_agent.session_store import SessionStore
from ops_agent.state import ExecutionMode, Phase, WorkflowKind
from ops_agent.validation import ManifestValidator

from conftest import NO_JITTER, reply

POSTGRES = {
    "resource_name": "clusters.postgresql.cnpg.io",
    "kind": "Cluster",
    "group": "postgresql.cnpg.io",
    "api_version": "postgresql.cnpg.io/v1",
    "capabilities": ["postgresql", "database", "backups"],
    "providers": ["cloudnative-pg"],
    "description": "Highly available PostgreSQL database cluster",
    "confidence": 0.9,
}

CLARIFIED = reply({
    "clarified_intent": "PostgreSQL database with daily backups in namespace shop",
    "missing_information": ["storage size"],
})

SOLUTIONS = reply({"solutions": [
    {
        "id": "statefulset",
        "description": "Hand-rolled PostgreSQL StatefulSet",
        "score": 0.85,
        "resources": [{"kind": "StatefulSet", "apiVersion": "apps/v1"}, {"kind": "Service", "apiVersion": "v1"}],
    },
    {
        "id": "cnpg",
        "description": "CloudNativePG cluster",
        "score": 0.8,
        "resources": [{"kind": "Cluster", "apiVersion": "postgresql.cnpg.io/v1"}],
    },
]})

QUESTIONS = reply({"questions": [
    {"id": "storage", "question": "How much storage?", "required": True, "default": "10Gi"},
    {"id": "name", "question": "Name of the database cluster?", "required": True},
    {"id": "monitoring", "question": "Enable monitoring?", "required": False},
]})

QUESTIONS_WITH_DEFAULTS = reply({"questions": [
    {"id": "storage", "question": "How much storage?", "required": True, "default": "10Gi"},
    {"id": "name", "question": "Name of the database cluster?", "required": True, "default": "orders-db"},
]})

MANIFEST = """\
apiVersion: postgresql.cnpg.io/v1
kind: Cluster
metadata:
  name: orders-db
  namespace: shop
  labels:
    app: orders
spec:
  instances: 3
  storage:
    size: 10Gi
"""

MANIFEST_REPLY = reply(f"Here you go:\n```yaml\n{MANIFEST}```")


@pytest.fixture
def store(tmp_path):
    return SessionStore(str(tmp_path / "state"), ttl_minutes=60)


@pytest.fixture
def engine(store, model, gateway, cluster, fake_sleep):
    index = CapabilityIndex(model, InMemoryVectorStore(), backoff=NO_JITTER, sleep=fake_sleep)
    return SessionEngine(
        store=store,
        model=model,
        gateway=gateway,
        index=index,
        validator=ManifestValidator(cluster),
        deployer=DeployOperation(gateway, poll_interval=1, sleep=fake_sleep),
        backoff=NO_JITTER,
        sleep=fake_sleep,
    )


async def to_answers(engine, model, mode=ExecutionMode.MANUAL, questions=QUESTIONS, *later):
    await engine.index.index(POSTGRES)
    session = engine.create_session(WorkflowKind.RECOMMENDATION, "PostgreSQL database with backups", mode=mode)
    model.queue(CLARIFIED, SOLUTIONS, questions, *later)
    return await engine.advance(session.id)


def test_operator_solution_preferred_within_margin():
    ranked = rank_solutions([
        {"id": "manual", "score": 0.85, "resources": [{"kind": "Deployment", "apiVersion": "apps/v1"}]},
        {"id": "operator", "score": 0.8, "resources": [{"kind": "Cluster", "apiVersion": "postgresql.cnpg.io/v1"}]},
        {"id": "far", "score": 0.5, "resources": [{"kind": "Redis", "apiVersion": "cache.example.io/v1"}]},
    ])
    assert [s["id"] for s in ranked] == ["operator", "manual", "far"]


def test_operator_not_preferred_outside_margin():
    ranked = rank_solutions([
        {"id": "manual", "score": 0.95, "resources": [{"kind": "Deployment", "apiVersion": "apps/v1"}]},
        {"id": "operator", "score": 0.6, "resources": [{"kind": "Cluster", "apiVersion": "postgresql.cnpg.io/v1"}]},
    ])
    assert [s["id"] for s in ranked] == ["manual", "operator"]


def test_unscored_or_empty_solutions_dropped():
    ranked = rank_solutions([
        {"id": "a", "resources": [{"kind": "Deployment", "apiVersion": "apps/v1"}]},
        {"id": "b", "score": 0.7, "resources": []},
        {"id": "c", "score": 7, "resources": [{"kind": "Deployment", "apiVersion": "apps/v1"}]},
        "junk",
    ])
    assert [(s["id"], s["score"]) for s in ranked] == [("c", 1.0)]


def test_solution_ids_are_reduced_to_a_path_segment():
    resources = [{"kind": "Deployment", "apiVersion": "apps/v1"}]
    ranked = rank_solutions([
        {"id": "../../../escape", "score": 0.9, "resources": resources},
        {"id": "/etc", "score": 0.8, "resources": resources},
        {"id": "..", "score": 0.7, "resources": resources},
    ])
    assert [s["id"] for s in ranked] == ["escape", "etc", "solution-3"]


def test_normalize_questions_defaults():
    questions = normalize_questions([{"question": "Replicas?"}, {"id": "x"}, {"id": "ns", "question": "Namespace?",
                                                                             "required": False, "default": "default"}])
    assert questions == [
        {"id": "q1", "question": "Replicas?", "required": True, "default": None},
        {"id": "ns", "question": "Namespace?", "required": False, "default": "default"},
    ]


@pytest.mark.asyncio
async def test_manual_recommendation_end_to_end(engine, model, cluster, store):
    session = await to_answers(engine, model)

    assert session.phase == Phase.AWAITING_ANSWERS
    assert session.context.clarified_intent.startswith("PostgreSQL database")
    assert session.id in engine._locks
    assert session.context.capability_matches[0]["resource"] == "clusters.postgresql.cnpg.io"
    assert session.context.selected_solution["id"] == "cnpg"
    assert session.context.risk_score == pytest.approx(0.2)
    assert [q["id"] for q in session.context.questions] == ["storage", "name", "monitoring"]
    # Clarification only sees read-only tools
    offered = {t["name"] for t in model.requests[0]["tools"]}
    assert "kubectl_get" in offered
    assert "kubectl_delete" not in offered

    model.queue(MANIFEST_REPLY)
    session = await engine.advance(session.id, {"answers": {"name": "orders-db"}})

    assert session.phase == Phase.MANIFEST_GENERATED
    assert session.context.answers == {"storage": "10Gi", "name": "orders-db"}
    assert session.context.validation.valid
    path = session.context.manifest_path
    assert path == os.path.join(store.session_dir, session.id, "cnpg", "manifest.yaml")
    with open(path) as f:
        assert f.read() == MANIFEST
    assert cluster.objects == {}

    session = await engine.advance(session.id, {"deploy": True, "note": "ship it"})

    assert session.phase == Phase.DEPLOYED
    assert session.context.deployment.success
    assert ("cluster", "shop", "orders-db") in cluster.objects
    approvals = [t.approval for t in session.history if t.approval]
    assert [(a.granted_by, a.note) for a in approvals] == [("user", "ship it")]
    assert [t.to_phase for t in session.history] == [
        Phase.CLARIFYING, Phase.SOLUTION_ASSEMBLED, Phase.AWAITING_ANSWERS,
        Phase.MANIFEST_GENERATED, Phase.MANIFEST_GENERATED, Phase.DEPLOYED,
    ]
    assert engine.get_session(session.id).phase == Phase.DEPLOYED
    assert session.id not in engine._locks


@pytest.mark.asyncio
async def test_manifest_written_inside_session_dir(engine, model, store, tmp_path):
    await engine.index.index(POSTGRES)
    session = engine.create_session(WorkflowKind.RECOMMENDATION, "PostgreSQL database with backups")
    model.queue(CLARIFIED, reply({"solutions": [{
        "id": "../../../escape",
        "score": 0.9,
        "resources": [{"kind": "Cluster", "apiVersion": "postgresql.cnpg.io/v1"}],
    }]}), QUESTIONS_WITH_DEFAULTS)
    session = await engine.advance(session.id)

    model.queue(MANIFEST_REPLY)
    session = await engine.advance(session.id, {"answers": {}})

    assert session.phase == Phase.MANIFEST_GENERATED
    session_dir = os.path.join(store.session_dir, session.id)
    assert session.context.manifest_path == os.path.join(session_dir, "escape", "manifest.yaml")
    assert os.path.isfile(session.context.manifest_path)
    assert not os.path.exists(tmp_path.parent / "escape")


@pytest.mark.asyncio
async def test_automatic_low_risk_runs_to_deployed(engine, model, cluster):
    session = await to_answers(engine, model, ExecutionMode.AUTOMATIC, QUESTIONS_WITH_DEFAULTS, MANIFEST_REPLY)

    assert session.phase == Phase.DEPLOYED
    assert session.context.answers == {"storage": "10Gi", "name": "orders-db"}
    assert {t.approval.granted_by for t in session.history if t.approval} == {"auto"}
    assert ("cluster", "shop", "orders-db") in cluster.objects


@pytest.mark.asyncio
async def test_automatic_mode_stops_when_answers_are_needed(engine, model):
    session = await to_answers(engine, model, mode=ExecutionMode.AUTOMATIC)
    assert session.phase == Phase.AWAITING_ANSWERS


@pytest.mark.asyncio
async def test_answers_are_checked_before_anything_runs(engine, model):
    session = await to_answers(engine, model)
    calls = len(model.requests)

    with pytest.raises(InvalidInputError, match="name"):
        await engine.advance(session.id, {"answers": {"storage": "20Gi"}})
    with pytest.raises(InvalidInputError, match="Unknown question"):
        await engine.advance(session.id, {"answers": {"name": "db", "colour": "blue"}})
    with pytest.raises(InvalidInputError):
        await engine.advance(session.id)

    assert len(model.requests) == calls
    assert engine.get_session(session.id).phase == Phase.AWAITING_ANSWERS


@pytest.mark.asyncio
async def test_invalid_manifest_is_repaired(engine, model, cluster):
    session = await to_answers(engine, model)
    cluster.script("apply", "--dry-run=server", returncode=1,
                   stderr='error: unknown field "instancez" in io.cnpg.postgresql.v1.ClusterSpec', times=1)
    model.queue(reply(MANIFEST.replace("instances", "instancez")), MANIFEST_REPLY)

    session = await engine.advance(session.id, {"answers": {"name": "orders-db"}})

    assert session.phase == Phase.MANIFEST_GENERATED
    repair_prompt = model.requests[-1]["messages"][0]["content"]
    assert 'unknown field "instancez"' in repair_prompt
    assert "instancez: 3" in repair_prompt


@pytest.mark.asyncio
async def test_manifest_that_never_validates_fails_session(engine, model, cluster):
    session = await to_answers(engine, model)
    cluster.script("apply", "--dry-run=server", returncode=1, stderr='error: unknown field "instancez"')
    model.default = MANIFEST_REPLY

    with pytest.raises(ManifestConvergenceError):
        await engine.advance(session.id, {"answers": {"name": "orders-db"}})

    failed = engine.get_session(session.id)
    assert failed.phase == Phase.FAILED
    assert failed.context.last_error.kind == "ManifestConvergenceError"
    assert failed.history[-1].error.category == "validation"
    assert len(cluster.calls_for("apply")) == engine.max_manifest_attempts


@pytest.mark.asyncio
async def test_deploy_requires_explicit_confirmation(engine, model):
    session = await to_answers(engine, model)
    model.queue(MANIFEST_REPLY)
    session = await engine.advance(session.id, {"answers": {"name": "orders-db"}})

    with pytest.raises(InvalidInputError):
        await engine.advance(session.id, {"deploy": False})
    with pytest.raises(InvalidInputError):
        await engine.advance(session.id, {"deploy": True, "timeout": -1})

    assert engine.get_session(session.id).phase == Phase.MANIFEST_GENERATED


@pytest.mark.asyncio
async def test_apply_failure_fails_session_without_raising(engine, model, cluster):
    session = await to_answers(engine, model)
    model.queue(MANIFEST_REPLY)
    session = await engine.advance(session.id, {"answers": {"name": "orders-db"}})
    cluster.script("apply", "-f", returncode=1, stderr='error: admission webhook denied the request')

    session = await engine.advance(session.id, {"deploy": True})

    assert session.phase == Phase.FAILED
    assert session.context.last_error.kind == "DeploymentFailed"
    assert not session.context.deployment.success


@pytest.mark.asyncio
async def test_no_solution_fails_session(engine, model):
    session = engine.create_session(WorkflowKind.RECOMMENDATION, "something vague")
    model.queue(CLARIFIED, reply({"solutions": []}), reply("not json at all"))

    with pytest.raises(ModelResponseError):
        await engine.advance(session.id)

    failed = engine.get_session(session.id)
    assert failed.phase == Phase.FAILED
    assert failed.context.last_error.kind == "ModelResponseError"


def test_create_session_validation(engine):
    with pytest.raises(InvalidInputError):
        engine.create_session(WorkflowKind.RECOMMENDATION, "   ")
    with pytest.raises(InvalidInputError):
        engine.create_session("teleportation", "beam me up")
    with pytest.raises(InvalidInputError):
        engine.create_session(WorkflowKind.RECOMMENDATION, "db", confidence_threshold=1.5)

    session = engine.create_session("recommendation", "db", mode="automatic")
    assert session.mode == ExecutionMode.AUTOMATIC
    assert session.history[0].from_phase is None
    assert session.history[0].to_phase == Phase.CLARIFYING


@pytest.mark.asyncio
async def test_unknown_session(engine):
    with pytest.raises(SessionNotFoundError):
        await engine.advance("rec-missing")
    with pytest.raises(SessionNotFoundError):
        engine.delete_session("rec-missing")

