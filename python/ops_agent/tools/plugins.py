"""
Remote tool plugins over HTTP.

A plugin is a service answering POST {url}/execute with two hooks:
  describe -> {"name", "version", "tools": [{"name", "description", "inputSchema", "risk"?}]}
  invoke   -> {"sessionId", "success", "result" | "error", "state"}

PluginDiscovery registers described tools with the ToolGateway, at startup
and periodically afterwards, with exponential backoff between attempts.
"""

import asyncio
import json
import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from .. import config
from ..backoff import BackoffConfig, compute_delay, with_retry
from ..errors import InvalidInputError, OpsAgentError, PluginDiscoveryError, TransientServiceError
from ..state import RiskClass
from .gateway import ToolArgs, ToolDescriptor, ToolGateway, ToolOutput

logger = logging.getLogger(__name__)

DISCOVERY_ATTEMPTS = 5
READ_ONLY_MARKERS = {"read_only", "readonly", "read-only"}


class PluginConfig(BaseModel):
    name: str
    url: str
    timeout: float = config.PLUGIN_TIMEOUT
    required: bool = False


def load_plugin_configs(path: str = config.PLUGINS_CONFIG_PATH) -> List[PluginConfig]:
    """Read the plugin list (a JSON array). A missing file means no plugins."""
    if not os.path.exists(path):
        return []
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidInputError(f"Invalid JSON in plugin config at {path}: {e}") from e
    if not isinstance(raw, list):
        raise InvalidInputError(f"Plugin config at {path} must be an array, got {type(raw).__name__}")

    configs = []
    for index, entry in enumerate(raw):
        if isinstance(entry, dict) and "name" not in entry:
            entry = {**entry, "name": f"plugin-{index}"}
        try:
            configs.append(PluginConfig.model_validate(entry))
        except ValidationError as e:
            raise InvalidInputError(f"Plugin at index {index} in {path} is invalid: {e}") from e
    return configs


class PluginClient:
    """HTTP client for a single plugin."""

    def __init__(self, plugin: PluginConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.plugin = plugin
        self._transport = transport

    async def _execute(self, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.plugin.url.rstrip('/')}/execute"
        try:
            async with httpx.AsyncClient(timeout=self.plugin.timeout, transport=self._transport) as client:
                response = await client.post(url, json=body)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout, httpx.RemoteProtocolError) as e:
            raise TransientServiceError(f"Plugin '{self.plugin.name}' unreachable at {url}: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientServiceError(f"Plugin '{self.plugin.name}' returned {response.status_code}")
        if response.status_code != 200:
            raise OpsAgentError(f"Plugin '{self.plugin.name}' returned {response.status_code}: {response.text[:300]}")
        try:
            return response.json()
        except ValueError as e:
            raise OpsAgentError(f"Plugin '{self.plugin.name}' returned invalid JSON") from e

    async def describe(self) -> Dict[str, Any]:
        data = await self._execute({"hook": "describe"})
        if not isinstance(data.get("tools"), list):
            raise OpsAgentError(f"Plugin '{self.plugin.name}' describe response has no tool list")
        return data

    async def invoke(self, tool: str, args: Dict[str, Any], state: Optional[Dict[str, Any]] = None,
                     session_id: Optional[str] = None) -> ToolOutput:
        body: Dict[str, Any] = {"hook": "invoke", "payload": {"tool": tool, "args": args, "state": state or {}}}
        if session_id:
            body["sessionId"] = session_id
        data = await self._execute(body)

        if data.get("success"):
            result = data.get("result")
            # Plugin tools commonly wrap their own {success, data, message}
            if isinstance(result, dict) and "success" in result:
                if not result["success"]:
                    return ToolOutput(success=False, error=str(result.get("error") or result.get("message")))
                result = result.get("data", result.get("message", ""))
            output = result if isinstance(result, str) else json.dumps(result, default=str)
            return ToolOutput(success=True, output=output, command=f"{self.plugin.name}:{tool}")

        error = data.get("error") or {}
        message = error.get("message") if isinstance(error, dict) else str(error)
        return ToolOutput(success=False, error=message or "Plugin reported failure", command=f"{self.plugin.name}:{tool}")

    def descriptors(self, described: Dict[str, Any]) -> List[ToolDescriptor]:
        """Turn a describe response into gateway descriptors.

        Tools that do not declare themselves read-only are treated as mutating.
        """
        descriptors = []
        for tool in described.get("tools", []):
            name = tool.get("name")
            if not name:
                logger.warning(f"[plugins] Skipping unnamed tool from '{self.plugin.name}'")
                continue
            risk = str(tool.get("risk", "")).lower()
            descriptors.append(ToolDescriptor(
                name=name,
                plugin=self.plugin.name,
                description=tool.get("description", ""),
                risk_class=RiskClass.READ_ONLY if risk in READ_ONLY_MARKERS else RiskClass.MUTATING,
                input_schema=tool.get("inputSchema") or {"type": "object", "properties": {}},
                handler=self._handler(name),
            ))
        return descriptors

    def _handler(self, tool: str) -> Callable:
        async def handle(args: ToolArgs) -> ToolOutput:
            return await self.invoke(tool, dict(args))
        return handle


class PluginDiscovery:
    """Keeps the gateway's plugin registrations in sync with configured plugins."""

    def __init__(
        self,
        gateway: ToolGateway,
        plugins: List[PluginConfig],
        backoff: Optional[BackoffConfig] = None,
        interval: float = config.DISCOVERY_INTERVAL,
        attempts: int = DISCOVERY_ATTEMPTS,
        client_factory: Callable[[PluginConfig], PluginClient] = PluginClient,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.plugins = plugins
        self.backoff = backoff or BackoffConfig()
        self.interval = interval
        self.attempts = attempts
        self.client_factory = client_factory
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._consecutive_failures = 0
        self._last_error_log_time = 0.0

    async def _register(self, plugin: PluginConfig, retries: int):
        client = self.client_factory(plugin)
        described = await with_retry(
            client.describe,
            # A plugin that is still starting may answer with anything
            is_retryable=lambda e: isinstance(e, OpsAgentError),
            retry_count=retries,
            backoff=self.backoff,
            label=f"describe plugin '{plugin.name}'",
            sleep=self._sleep,
        )
        descriptors = client.descriptors(described)
        self.gateway.register_plugin(plugin.name, descriptors)
        logger.info(
            f"[plugins] Discovered '{plugin.name}' v{described.get('version', '?')}: "
            f"{[d.name for d in descriptors]}"
        )

    async def _round(self, retries: int) -> List[Dict[str, str]]:
        results = await asyncio.gather(
            *(self._register(plugin, retries) for plugin in self.plugins),
            return_exceptions=True,
        )
        failed = []
        for plugin, result in zip(self.plugins, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                failed.append({"name": plugin.name, "error": str(result), "required": plugin.required})
        return failed

    async def discover(self) -> List[str]:
        """One full discovery pass with per-plugin retries.

        Raises PluginDiscoveryError if a required plugin cannot be described.
        Returns the names of plugins registered afterwards.
        """
        if not self.plugins:
            logger.debug("[plugins] No plugins configured for discovery")
            return []

        logger.info(f"[plugins] Starting discovery of {[p.name for p in self.plugins]}")
        failed = await self._round(retries=self.attempts - 1)
        if failed:
            logger.warning(f"[plugins] Some plugins failed to discover: {[f['name'] for f in failed]}")

        required_failed = [{"name": f["name"], "error": f["error"]} for f in failed if f["required"]]
        if required_failed:
            raise PluginDiscoveryError(
                f"Required plugins failed to discover: {', '.join(f['name'] for f in required_failed)}",
                required_failed,
            )
        return self.gateway.plugins()

    def start(self) -> asyncio.Task:
        """Run discovery in the background; never blocks the caller."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("[plugins] Discovery stopped")

    async def _run(self):
        attempt = 0
        while True:
            failed = await self._round(retries=0)
            if not failed:
                attempt = 0
                self._consecutive_failures = 0
                await self._sleep(self.interval)
                continue

            self._consecutive_failures += 1
            delay = compute_delay(attempt, self.backoff)
            attempt += 1

            # Log first failure, then every 60 seconds after that
            now = time.time()
            if self._consecutive_failures == 1 or (now - self._last_error_log_time) >= 60:
                logger.warning(
                    f"[plugins] Discovery failed for {[f['name'] for f in failed]} "
                    f"(attempt #{self._consecutive_failures}). Retrying in {delay:.1f}s"
                )
                self._last_error_log_time = now
            await self._sleep(delay)
