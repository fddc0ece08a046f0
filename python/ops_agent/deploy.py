"""
Deploy Operation: apply a manifest file, then wait for readiness.

The apply goes through the ToolGateway's mutating kubectl_apply tool, so it
only runs for a session with an approval in its history. One deadline covers
validation, apply and readiness polling; running out of time while polling is
reported as readiness_timeout on an otherwise successful result.
"""

import asyncio
import json
import logging
import os
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import yaml

from . import config
from .errors import InvalidInputError, ManifestNotFoundError, SessionDirectoryMissingError
from .fsm import READ_ONLY, get_fsm
from .state import DeploymentResult, Session
from .tools.gateway import ToolGateway
from .validation import ManifestValidator, load_documents

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.yaml"

# (kind, name, namespace, group)
Target = Tuple[str, str, Optional[str], str]


_UNSAFE_ID_CHARS = re.compile(r'[^A-Za-z0-9_-]+')


def safe_solution_id(raw: Any, fallback: str) -> str:
    """Reduce a model-supplied solution id to a single path segment."""
    slug = _UNSAFE_ID_CHARS.sub('-', str(raw or "")).strip('-')
    return slug[:64] or fallback


def manifest_path_for(session_dir: str, solution_id: str) -> str:
    """Where a solution's manifest lives: <session_dir>/<solution_id>/manifest.yaml."""
    if not os.path.isdir(session_dir):
        raise SessionDirectoryMissingError(f"Session directory does not exist: {session_dir}")
    path = os.path.join(session_dir, solution_id, MANIFEST_FILENAME)
    root = os.path.realpath(session_dir)
    if os.path.commonpath([root, os.path.realpath(path)]) != root:
        raise InvalidInputError(f"Solution id {solution_id!r} points outside the session directory")
    return path


def _condition(status: Dict[str, Any], condition_type: str) -> Optional[str]:
    for condition in status.get("conditions") or []:
        if condition.get("type") == condition_type:
            return condition.get("status")
    return None


def is_ready(kind: str, obj: Dict[str, Any]) -> bool:
    """Readiness of a live object, by kind."""
    kind = kind.lower()
    if kind in config.NO_READINESS_KINDS:
        return True

    status = obj.get("status") or {}
    spec = obj.get("spec") or {}
    generation = (obj.get("metadata") or {}).get("generation")
    observed = status.get("observedGeneration")
    if generation is not None and observed is not None and observed < generation:
        return False

    if kind in ("deployment", "statefulset", "replicaset"):
        desired = spec.get("replicas", 1)
        ready = status.get("readyReplicas", 0)
        updated = status.get("updatedReplicas", ready if kind == "replicaset" else 0)
        return ready >= desired and updated >= desired
    if kind == "daemonset":
        desired = status.get("desiredNumberScheduled")
        return desired is not None and status.get("numberReady", 0) >= desired
    if kind == "job":
        return status.get("succeeded", 0) >= 1
    if kind == "pod":
        phase = status.get("phase")
        if phase == "Succeeded":
            return True
        containers = status.get("containerStatuses") or []
        return phase == "Running" and bool(containers) and all(c.get("ready") for c in containers)
    if kind == "persistentvolumeclaim":
        return status.get("phase") == "Bound"

    ready = _condition(status, "Ready")
    if ready is not None:
        return ready == "True"
    # Anything else counts as ready once it exists
    return True


def deployment_targets(documents: List[Dict[str, Any]]) -> List[Target]:
    targets = []
    for doc in documents:
        metadata = doc.get("metadata") or {}
        api_version = str(doc.get("apiVersion", ""))
        group = api_version.split('/', 1)[0] if '/' in api_version else ""
        targets.append((str(doc.get("kind", "")), metadata.get("name", ""), metadata.get("namespace"), group))
    return targets


class DeployOperation:
    def __init__(
        self,
        gateway: ToolGateway,
        validator: Optional[ManifestValidator] = None,
        poll_interval: float = config.READINESS_POLL_INTERVAL,
        fetch_timeout: float = config.TOOL_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.validator = validator
        self.poll_interval = poll_interval
        self.fetch_timeout = fetch_timeout
        self._sleep = sleep
        self._clock = clock

    async def deploy(
        self,
        manifest_path: str,
        timeout: float = config.DEPLOY_TIMEOUT,
        *,
        session: Optional[Session] = None,
    ) -> DeploymentResult:
        """Apply `manifest_path` and wait for readiness, all within `timeout` seconds.

        The apply runs with the risk classes `session`'s phase allows. Without
        a session only read-only tools are available, so the apply is refused.

        Raises ManifestNotFoundError when the file is missing and
        ToolPermissionError when the session has no approval in its history.
        """
        deadline = self._clock() + timeout
        if not os.path.isfile(manifest_path):
            raise ManifestNotFoundError(f"Manifest not found: {manifest_path}")
        with open(manifest_path, encoding="utf-8") as f:
            manifest = f.read()
        try:
            documents = [d for d in load_documents(manifest) if isinstance(d, dict)]
        except yaml.YAMLError as e:
            raise InvalidInputError(f"Manifest at {manifest_path} is not valid YAML: {e}") from e

        if self.validator is not None:
            validation = await self.validator.validate(manifest)
            if not validation.valid:
                return DeploymentResult(
                    success=False,
                    manifest_path=manifest_path,
                    output=validation.error_summary(),
                    message="Manifest failed validation; nothing was applied",
                )

        targets = deployment_targets(documents)
        applied = [f"{kind}/{name}" for kind, name, _, _ in targets]
        allowed = get_fsm(session.kind).allowed_risk_classes(session) if session is not None else READ_ONLY

        remaining = deadline - self._clock()
        if remaining <= 0:
            logger.warning(f"[deploy] No time left to apply {manifest_path}")
            return DeploymentResult(
                success=False,
                manifest_path=manifest_path,
                output="",
                message="Apply timed out",
            )

        logger.info(f"[deploy] Applying {manifest_path} ({len(targets)} objects)")
        record = await self.gateway.invoke(
            "kubectl_apply",
            {"file_path": manifest_path},
            allowed,
            timeout=remaining,
            session=session,
        )
        if not record.success:
            message = "Apply timed out" if record.timed_out else "Apply failed"
            logger.warning(f"[deploy] {message}: {record.error}")
            return DeploymentResult(
                success=False,
                manifest_path=manifest_path,
                output=record.error or record.output or "",
                message=message,
            )

        pending = await self._wait_ready(targets, deadline)
        if pending:
            logger.warning(f"[deploy] Not ready after {timeout}s: {pending}")
            return DeploymentResult(
                success=True,
                readiness_timeout=True,
                manifest_path=manifest_path,
                output=record.output or "",
                message=f"Applied, but not ready within {timeout}s: {', '.join(pending)}",
                applied_resources=applied,
            )

        logger.info(f"[deploy] {len(targets)} objects applied and ready")
        return DeploymentResult(
            success=True,
            manifest_path=manifest_path,
            output=record.output or "",
            message="Applied and ready",
            applied_resources=applied,
        )

    async def _fetch(self, target: Target, timeout: float) -> Optional[Dict[str, Any]]:
        kind, name, namespace, group = target
        args: Dict[str, Any] = {"resource": f"{kind.lower()}.{group}" if group else kind.lower(), "name": name}
        if namespace:
            args["namespace"] = namespace
        record = await self.gateway.invoke("kubectl_get_resource_json", args, READ_ONLY, timeout=timeout)
        if not record.success or not record.output:
            return None
        try:
            return json.loads(record.output)
        except json.JSONDecodeError:
            return None

    async def _wait_ready(self, targets: List[Target], deadline: float) -> List[str]:
        """Poll until every target is ready; returns those still pending at `deadline`."""
        pending = [t for t in targets if t[0].lower() not in config.NO_READINESS_KINDS]

        while pending:
            still_pending = []
            for target in pending:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    still_pending.append(target)
                    continue
                obj = await self._fetch(target, min(self.fetch_timeout, remaining))
                if obj is None or not is_ready(target[0], obj):
                    still_pending.append(target)
            pending = still_pending
            if not pending:
                break
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await self._sleep(min(self.poll_interval, remaining))

        return [f"{kind}/{name}" for kind, name, _, _ in pending]
