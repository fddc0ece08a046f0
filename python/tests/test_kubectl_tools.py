import json

import pytest
from pydantic import ValidationError

from ops_agent.errors import InvalidToolArgumentsError, ToolPermissionError
from ops_agent.fsm import ALL_RISK_CLASSES, READ_ONLY
from ops_agent.state import Phase, RiskClass, WorkflowKind
from ops_agent.tools.definitions import (
    KUBECTL_TOOLS, KubectlApply, KubectlEvents, KubectlGet, KubectlLogs, KubectlPatch,
    KubectlRollout, KubectlSetResources,
)
from ops_agent.tools.kubectl import truncate_output
from ops_agent.tools.safe_executor import SafeExecutor

from conftest import make_session

APPROVED = make_session(WorkflowKind.REMEDIATION, Phase.REMEDIATING, approved=True)

DEPLOYMENT = """
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
  namespace: shop
spec:
  replicas: 2
"""


def test_get_builds_argv_with_json_output():
    args, stdin = SafeExecutor.build_args(KubectlGet(resource="pods", namespace="default", selector="app=frontend"))
    assert args == ["get", "pods", "-n", "default", "-l", "app=frontend", "-o", "json"]
    assert stdin is None


def test_injection_stays_a_single_argument():
    args, _ = SafeExecutor.build_args(KubectlGet(resource="pods; rm -rf /", namespace="default"))
    assert "pods; rm -rf /" in args
    assert "rm" not in args


def test_events_combine_field_selectors():
    args, _ = SafeExecutor.build_args(KubectlEvents(namespace="shop", related_object="web-1"))
    assert "--field-selector=type=Warning,involvedObject.name=web-1" in args
    assert args[-1] == "--sort-by=.lastTimestamp"


def test_logs_tail_bounds():
    args, _ = SafeExecutor.build_args(KubectlLogs(pod_name="web-1", previous=True, tail=50))
    assert args == ["logs", "web-1", "-p", "--tail=50"]
    with pytest.raises(ValidationError):
        KubectlLogs(pod_name="web-1", tail=0)


def test_apply_from_content_uses_stdin():
    args, stdin = SafeExecutor.build_args(KubectlApply(yaml_content=DEPLOYMENT))
    assert args == ["apply", "-f", "-"]
    assert stdin == DEPLOYMENT


def test_apply_needs_exactly_one_source():
    with pytest.raises(ValidationError):
        KubectlApply()
    with pytest.raises(ValidationError):
        KubectlApply(yaml_content=DEPLOYMENT, file_path="/tmp/m.yaml")


def test_set_resources_needs_something_to_set():
    with pytest.raises(ValidationError):
        KubectlSetResources(resource="deployment", name="web", container="app")


def test_verification_args_for_mutations():
    assert SafeExecutor.get_verification_args(KubectlRollout(action="restart", resource="deployment", name="web")) == [
        "rollout", "status", "deployment/web", "--watch=false",
    ]
    assert SafeExecutor.get_verification_args(KubectlApply(yaml_content=DEPLOYMENT)) == [
        "get", "deployment", "web", "-n", "shop", "-o", "json",
    ]
    assert SafeExecutor.get_verification_args(KubectlApply(file_path="/tmp/m.yaml")) is None
    assert SafeExecutor.get_verification_args(
        KubectlPatch(resource="deployment", name="web", patch='{"spec":{"replicas":1}}')
    ) == ["get", "deployment", "web", "-o", "json"]


def test_every_tool_has_a_risk_class():
    mutating = {name for name, (_, risk) in KUBECTL_TOOLS.items() if risk == RiskClass.MUTATING}
    assert mutating == {
        "kubectl_apply", "kubectl_delete", "kubectl_rollout", "kubectl_scale", "kubectl_set_resources", "kubectl_patch",
    }


def test_truncate_output():
    assert truncate_output("short", limit=10) == "short"
    assert truncate_output("x" * 20, limit=10).endswith("[truncated 10 chars]")


@pytest.mark.asyncio
async def test_plugin_runs_read_only_tool(gateway, cluster):
    record = await gateway.invoke("kubectl_describe", {"resource": "pod", "name": "web-1"}, READ_ONLY)

    assert record.success
    assert record.plugin == "kubectl"
    assert cluster.calls[-1][0] == ["describe", "pod", "web-1"]


@pytest.mark.asyncio
async def test_plugin_reports_kubectl_failure(gateway, cluster):
    cluster.script("describe", returncode=1, stderr='Error from server (NotFound): pods "ghost" not found')

    record = await gateway.invoke("kubectl_describe", {"resource": "pod", "name": "ghost"}, READ_ONLY)

    assert not record.success
    assert "NotFound" in record.error


@pytest.mark.asyncio
async def test_mutation_appends_verification_snapshot(gateway, cluster):
    record = await gateway.invoke(
        "kubectl_apply", {"yaml_content": DEPLOYMENT}, ALL_RISK_CLASSES, session=APPROVED,
    )

    assert record.success
    assert "--- verification ---" in record.output
    snapshot = record.output.split("--- verification ---\n", 1)[1]
    assert json.loads(snapshot)["metadata"]["name"] == "web"


@pytest.mark.asyncio
async def test_mutation_refused_without_approval(gateway, cluster):
    with pytest.raises(ToolPermissionError):
        await gateway.invoke("kubectl_delete", {"resource": "pod", "name": "web-1"}, ALL_RISK_CLASSES)
    assert cluster.calls == []


@pytest.mark.asyncio
async def test_bad_arguments_rejected(gateway):
    with pytest.raises(InvalidToolArgumentsError):
        await gateway.invoke("kubectl_scale", {"resource": "deployment", "name": "web", "replicas": -1},
                             ALL_RISK_CLASSES, session=APPROVED)
