"""
Capability scan: cluster resource types -> model inference -> index.

Talks to the cluster only through the gateway's read-only kubectl tools.
A failure on one resource is logged and counted; the scan moves on.
"""

import logging
import re
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..backoff import with_retry
from ..errors import OpsAgentError
from ..fsm import READ_ONLY
from ..llm import ModelService
from ..parsing import parse_json_object
from ..prompts import CAPABILITY_INFERENCE_PROMPT
from ..tools.gateway import ToolGateway
from .index import CapabilityIndex
from .models import ResourceSchema, qualified_name

logger = logging.getLogger(__name__)

MAX_DEFINITION_CHARS = 6000


class ApiResource(BaseModel):
    """One row of `kubectl api-resources -o wide`."""
    name: str
    group: str = ""
    api_version: str
    namespaced: bool
    kind: str
    verbs: List[str] = []

    @property
    def qualified_name(self) -> str:
        return qualified_name(self.name, self.group)


class ScanSummary(BaseModel):
    indexed: List[str] = []
    failed: Dict[str, str] = {}

    @property
    def total(self) -> int:
        return len(self.indexed) + len(self.failed)


def parse_api_resources(output: str) -> List[ApiResource]:
    """Parse the wide table by header offsets; SHORTNAMES is often blank."""
    lines = [line for line in output.splitlines() if line.strip()]
    if not lines:
        return []
    header = lines[0]
    columns = [(m.group(0), m.start()) for m in re.finditer(r"\S+", header)]
    bounds = {
        name: (start, columns[i + 1][1] if i + 1 < len(columns) else None)
        for i, (name, start) in enumerate(columns)
    }

    def cell(line: str, column: str) -> str:
        if column not in bounds:
            return ""
        start, end = bounds[column]
        return line[start:end].strip() if end is not None else line[start:].strip()

    resources = []
    for line in lines[1:]:
        api_version = cell(line, "APIVERSION")
        name = cell(line, "NAME")
        if not name or not api_version:
            continue
        group = api_version.split('/', 1)[0] if '/' in api_version else ""
        verbs = cell(line, "VERBS").strip("[]").replace(",", " ").split()
        resources.append(ApiResource(
            name=name,
            group=group,
            api_version=api_version,
            namespaced=cell(line, "NAMESPACED").lower() == "true",
            kind=cell(line, "KIND"),
            verbs=verbs,
        ))
    return resources


class CapabilityScanner:
    def __init__(self, gateway: ToolGateway, index: CapabilityIndex, model: ModelService):
        self.gateway = gateway
        self.index = index
        self.model = model

    async def list_resources(self) -> List[ApiResource]:
        record = await self.gateway.invoke("kubectl_api_resources", {"verbs": "list"}, READ_ONLY)
        if not record.success:
            raise OpsAgentError(f"Could not list cluster resource types: {record.error}")
        return parse_api_resources(record.output or "")

    async def _definition(self, resource: ApiResource) -> str:
        record = await self.gateway.invoke(
            "kubectl_explain",
            {"resource": resource.name, "api_version": resource.api_version},
            READ_ONLY,
        )
        if not record.success:
            raise OpsAgentError(f"kubectl explain failed for {resource.qualified_name}: {record.error}")
        return (record.output or "")[:MAX_DEFINITION_CHARS]

    async def _infer(self, resource: ApiResource, definition: str) -> ResourceSchema:
        prompt = CAPABILITY_INFERENCE_PROMPT.format(
            resource_name=resource.qualified_name,
            kind=resource.kind,
            api_version=resource.api_version,
            scope="namespaced" if resource.namespaced else "cluster-scoped",
            definition=definition,
        )
        response = await with_retry(
            lambda: self.model.send_message([{"role": "user", "content": prompt}], []),
            label=f"infer {resource.qualified_name}",
        )
        inferred = parse_json_object(response.content, f"capability inference for {resource.qualified_name}")
        return ResourceSchema.model_validate({
            **inferred,
            "resource_name": resource.qualified_name,
            "kind": resource.kind,
            "group": resource.group,
            "api_version": resource.api_version,
            "namespaced": resource.namespaced,
            "verbs": resource.verbs,
        })

    async def scan(self, resource_names: Optional[List[str]] = None) -> ScanSummary:
        """Index every listed resource type (or only the named ones)."""
        resources = await self.list_resources()
        if resource_names:
            wanted = set(resource_names)
            resources = [r for r in resources if r.qualified_name in wanted or r.name in wanted]

        summary = ScanSummary()
        logger.info(f"[capabilities] Scanning {len(resources)} resource types")
        for resource in resources:
            name = resource.qualified_name
            try:
                definition = await self._definition(resource)
                schema = await self._infer(resource, definition)
                await self.index.index(schema)
                summary.indexed.append(name)
            except (OpsAgentError, ValueError) as e:
                # pydantic's ValidationError is a ValueError
                logger.warning(f"[capabilities] Skipping {name}: {e}")
                summary.failed[name] = str(e)

        logger.info(f"[capabilities] Scan complete: {len(summary.indexed)} indexed, {len(summary.failed)} failed")
        return summary
