"""
Argument models of the built-in kubectl tools.

The models double as the tools' input schemas (pydantic JSON schema), so the
docstrings and field descriptions are what the model service reads when it
decides which tool to call.
"""

from typing import Dict, Literal, Optional, Tuple, Type

from pydantic import BaseModel, Field, model_validator

from ..state import RiskClass

NAMESPACE_HELP = "Namespace to act in; the kubeconfig default when omitted"
NAME_HELP = "Object name"


# --- read-only ---

class KubectlGet(BaseModel):
    """List objects of one type (`kubectl get`)."""
    resource: str = Field(..., description="Object type, plural or singular: pods, deployments, nodes...")
    namespace: Optional[str] = Field(None, description=NAMESPACE_HELP)
    all_namespaces: bool = Field(False, description="Search every namespace instead of one")
    selector: Optional[str] = Field(None, description="Label query such as app=checkout,tier!=cache")
    field_selector: Optional[str] = Field(None, description="Field query such as status.phase=Pending")


class KubectlDescribe(BaseModel):
    """Human-readable details and recent events of one object (`kubectl describe`)."""
    resource: str = Field(..., description="Object type: pod, node, ingress...")
    name: str = Field(..., description=NAME_HELP)
    namespace: Optional[str] = Field(None, description=NAMESPACE_HELP)


class KubectlLogs(BaseModel):
    """Recent log lines of a pod's container."""
    pod_name: str = Field(..., description="Pod to read from")
    namespace: Optional[str] = Field(None, description=NAMESPACE_HELP)
    container: Optional[str] = Field(None, description="Container to read; needed for multi-container pods")
    previous: bool = Field(False, description="Read the last terminated instance, e.g. after a crash")
    tail: int = Field(100, ge=1, le=5000, description="How many lines from the end")


class KubectlEvents(BaseModel):
    """Cluster events, newest last."""
    namespace: Optional[str] = Field(None, description=NAMESPACE_HELP)
    all_namespaces: bool = Field(False, description="Collect events from every namespace")
    only_warnings: bool = Field(True, description="Skip Normal events")
    related_object: Optional[str] = Field(None, description="Only events whose involved object has this name")


class KubectlGetResourceJson(BaseModel):
    """One object as JSON, status included."""
    resource: str = Field(..., description="Object type, group-qualified for CRDs (certificates.cert-manager.io)")
    name: str = Field(..., description=NAME_HELP)
    namespace: Optional[str] = Field(None, description=NAMESPACE_HELP)


class KubectlApiResources(BaseModel):
    """Resource types the API server serves, custom resources included."""
    verbs: Optional[str] = Field("list", description="Only types supporting this verb")
    api_group: Optional[str] = Field(None, description="Only types of this API group, e.g. cert-manager.io")
    namespaced: Optional[bool] = Field(None, description="true for namespaced types, false for cluster-scoped")


class KubectlExplain(BaseModel):
    """Field documentation of a resource type (`kubectl explain`)."""
    resource: str = Field(..., description="Type or dotted field path: deployment.spec.strategy")
    recursive: bool = Field(False, description="Print the whole field tree")
    api_version: Optional[str] = Field(None, description="Explain the kind as served by this group/version")


class KubectlApplyDryRun(BaseModel):
    """Check a manifest against the API server; nothing is persisted."""
    yaml_content: str = Field(..., description="Manifest text, one or more YAML documents")
    namespace: Optional[str] = Field(None, description="Namespace for documents that do not set one")
    mode: Literal["server", "client"] = Field("server", description="Where the dry run is evaluated")


# --- mutating (refused without a recorded approval) ---

class KubectlApply(BaseModel):
    """Create or update objects from a manifest. Needs approval."""
    yaml_content: Optional[str] = Field(None, description="Manifest text")
    file_path: Optional[str] = Field(None, description="Manifest file on the agent's filesystem")
    namespace: Optional[str] = Field(None, description="Namespace for documents that do not set one")

    @model_validator(mode="after")
    def _exactly_one_source(self):
        if bool(self.yaml_content) == bool(self.file_path):
            raise ValueError("Provide exactly one of yaml_content or file_path")
        return self


class KubectlDelete(BaseModel):
    """Remove one object. Needs approval."""
    resource: str = Field(..., description="Object type: pod, job, pvc...")
    name: str = Field(..., description=NAME_HELP)
    namespace: Optional[str] = Field(None, description=NAMESPACE_HELP)


class KubectlRollout(BaseModel):
    """Restart a workload or roll it back to its previous revision. Needs approval."""
    action: Literal["restart", "undo"] = Field(..., description="restart or undo")
    resource: str = Field(..., description="Workload type: deployment, statefulset or daemonset")
    name: str = Field(..., description=NAME_HELP)
    namespace: Optional[str] = Field(None, description=NAMESPACE_HELP)


class KubectlScale(BaseModel):
    """Change a workload's replica count. Needs approval."""
    resource: str = Field(..., description="Workload type: deployment, statefulset, replicaset")
    name: str = Field(..., description=NAME_HELP)
    replicas: int = Field(..., ge=0, description="Desired replicas")
    namespace: Optional[str] = Field(None, description=NAMESPACE_HELP)


class KubectlSetResources(BaseModel):
    """Change CPU/memory requests or limits of one container. Needs approval."""
    resource: str = Field(..., description="Workload type, e.g. deployment")
    name: str = Field(..., description=NAME_HELP)
    container: str = Field(..., description="Container inside the pod template")
    requests: Optional[str] = Field(None, description="Comma-separated requests: cpu=250m,memory=512Mi")
    limits: Optional[str] = Field(None, description="Comma-separated limits: cpu=1,memory=1Gi")
    namespace: Optional[str] = Field(None, description=NAMESPACE_HELP)

    @model_validator(mode="after")
    def _something_to_set(self):
        if not self.requests and not self.limits:
            raise ValueError("Provide requests, limits or both")
        return self


class KubectlPatch(BaseModel):
    """Patch fields of a live object. Needs approval."""
    resource: str = Field(..., description="Object type, e.g. deployment")
    name: str = Field(..., description=NAME_HELP)
    patch: str = Field(..., description="Patch document as JSON")
    patch_type: Literal["strategic", "merge", "json"] = Field("strategic", description="Patch strategy")
    namespace: Optional[str] = Field(None, description=NAMESPACE_HELP)


# Tool name -> (argument model, risk class)
KUBECTL_TOOLS: Dict[str, Tuple[Type[BaseModel], RiskClass]] = {
    "kubectl_get": (KubectlGet, RiskClass.READ_ONLY),
    "kubectl_describe": (KubectlDescribe, RiskClass.READ_ONLY),
    "kubectl_logs": (KubectlLogs, RiskClass.READ_ONLY),
    "kubectl_events": (KubectlEvents, RiskClass.READ_ONLY),
    "kubectl_get_resource_json": (KubectlGetResourceJson, RiskClass.READ_ONLY),
    "kubectl_api_resources": (KubectlApiResources, RiskClass.READ_ONLY),
    "kubectl_explain": (KubectlExplain, RiskClass.READ_ONLY),
    "kubectl_apply_dryrun": (KubectlApplyDryRun, RiskClass.READ_ONLY),
    "kubectl_apply": (KubectlApply, RiskClass.MUTATING),
    "kubectl_delete": (KubectlDelete, RiskClass.MUTATING),
    "kubectl_rollout": (KubectlRollout, RiskClass.MUTATING),
    "kubectl_scale": (KubectlScale, RiskClass.MUTATING),
    "kubectl_set_resources": (KubectlSetResources, RiskClass.MUTATING),
    "kubectl_patch": (KubectlPatch, RiskClass.MUTATING),
}
