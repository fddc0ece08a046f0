"""
Cluster CLI collaborator: a thin async wrapper around kubectl.

Only the Tool Gateway's built-in plugin, the Manifest Validator and the
Deploy Operation talk to the cluster, always through a ClusterClient.
"""

import asyncio
import logging
import shlex
from typing import List, Optional, Protocol

from pydantic import BaseModel

from . import config
from .errors import OpsAgentError, ToolTimeoutError, TransientServiceError

logger = logging.getLogger(__name__)

# stderr fragments that mean "the API server was not reachable", not "bad request"
CONNECTIVITY_MARKERS = [
    'unable to connect to the server',
    'connection refused',
    'connection reset',
    'i/o timeout',
    'tls handshake timeout',
    'the server is currently unable to handle the request',
    'etcdserver: request timed out',
]


class KubectlResult(BaseModel):
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return shlex.join(self.args)


class ClusterClient(Protocol):
    async def run(self, args: List[str], stdin: Optional[str] = None, timeout: Optional[float] = None) -> KubectlResult:
        ...


def is_connectivity_error(stderr: str) -> bool:
    lower = stderr.lower()
    return any(marker in lower for marker in CONNECTIVITY_MARKERS)


class KubectlRunner:
    """Runs kubectl as a subprocess (argv, never a shell)."""

    def __init__(
        self,
        binary: str = config.KUBECTL_BINARY,
        kube_context: str = config.KUBE_CONTEXT,
        kubeconfig: Optional[str] = None,
    ):
        self.binary = binary
        self.kube_context = kube_context
        self.kubeconfig = kubeconfig

    def build_argv(self, args: List[str]) -> List[str]:
        argv = [self.binary]
        if self.kube_context:
            argv.append(f"--context={self.kube_context}")
        if self.kubeconfig:
            argv.append(f"--kubeconfig={self.kubeconfig}")
        return argv + list(args)

    async def run(self, args: List[str], stdin: Optional[str] = None, timeout: Optional[float] = None) -> KubectlResult:
        argv = self.build_argv(args)
        logger.debug(f"[kubectl] {shlex.join(argv)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise OpsAgentError(f"kubectl binary not found: {self.binary}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(stdin.encode() if stdin is not None else None),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ToolTimeoutError(f"kubectl timed out after {timeout}s: {shlex.join(args[:3])}")

        result = KubectlResult(
            args=argv,
            returncode=proc.returncode,
            stdout=stdout.decode(errors='replace'),
            stderr=stderr.decode(errors='replace'),
        )
        if not result.ok and is_connectivity_error(result.stderr):
            raise TransientServiceError(f"Cluster unreachable: {result.stderr.strip()[:300]}")
        return result
