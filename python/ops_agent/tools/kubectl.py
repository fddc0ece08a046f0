"""
Built-in kubectl plugin.

Registers the SafeExecutor-backed kubectl tools with a ToolGateway. The
gateway decides whether a call may run; this module only turns validated
argument models into kubectl invocations.
"""

import logging
from typing import List

from pydantic import BaseModel

from .. import config
from ..cluster import ClusterClient, KubectlResult
from ..state import RiskClass
from .definitions import KUBECTL_TOOLS
from .gateway import ToolDescriptor, ToolGateway, ToolHandler, ToolOutput
from .safe_executor import SafeExecutor

logger = logging.getLogger(__name__)

PLUGIN_NAME = "kubectl"

# Callers parse these outputs as a whole
UNTRUNCATED_TOOLS = {"kubectl_get_resource_json"}


def truncate_output(text: str, limit: int = config.MAX_OUTPUT_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated {len(text) - limit} chars]"


def _to_output(result: KubectlResult, truncate: bool = True) -> ToolOutput:
    return ToolOutput(
        success=result.ok,
        output=truncate_output(result.stdout) if truncate else result.stdout,
        error=None if result.ok else (result.stderr.strip() or f"kubectl exited with {result.returncode}"),
        command=result.command,
    )


class KubectlPlugin:
    """kubectl tools over a ClusterClient."""

    def __init__(self, cluster: ClusterClient, verify_mutations: bool = True):
        self.cluster = cluster
        self.verify_mutations = verify_mutations

    def _handler(self, risk_class: RiskClass, truncate: bool = True) -> ToolHandler:
        async def handle(args: BaseModel) -> ToolOutput:
            argv, stdin = SafeExecutor.build_args(args)
            output = _to_output(await self.cluster.run(argv, stdin=stdin), truncate)
            if output.success and risk_class == RiskClass.MUTATING and self.verify_mutations:
                verify_args = SafeExecutor.get_verification_args(args)
                if verify_args:
                    check = await self.cluster.run(verify_args)
                    if check.ok:
                        output.output += "\n--- verification ---\n" + truncate_output(check.stdout)
                    else:
                        logger.debug(f"[kubectl] verification failed: {check.stderr.strip()[:200]}")
            return output

        return handle

    def descriptors(self) -> List[ToolDescriptor]:
        return [
            ToolDescriptor.from_args_model(
                name=name,
                plugin=PLUGIN_NAME,
                args_model=model,
                handler=self._handler(risk_class, truncate=name not in UNTRUNCATED_TOOLS),
                risk_class=risk_class,
            )
            for name, (model, risk_class) in KUBECTL_TOOLS.items()
        ]

    def register(self, gateway: ToolGateway):
        gateway.register_plugin(PLUGIN_NAME, self.descriptors())
