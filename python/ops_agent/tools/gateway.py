"""
Tool Gateway: the one place where tools get executed.

Plugins register ToolDescriptors (keyed by plugin + tool name). Callers invoke
tools by name, passing the risk classes their current phase allows; the
permission check lives here so no caller can skip it by omission. Mutating
tools additionally need the calling session to have an approval recorded in
its history.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Type, Union

from jsonschema import Draft202012Validator
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .. import config
from ..errors import (
    InvalidToolArgumentsError,
    OpsAgentError,
    ToolNotFoundError,
    ToolPermissionError,
    ToolTimeoutError,
)
from ..state import RiskClass, Session, ToolInvocationRecord, utcnow

logger = logging.getLogger(__name__)


class ToolOutput(BaseModel):
    """What a tool handler hands back to the gateway."""
    success: bool = True
    output: str = ""
    error: Optional[str] = None
    command: Optional[str] = None


ToolArgs = Union[BaseModel, Dict[str, Any]]
ToolHandler = Callable[[ToolArgs], Awaitable[ToolOutput]]


class ToolDescriptor(BaseModel):
    """A named, schema-described action registered by a plugin."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    plugin: str
    description: str = ""
    risk_class: RiskClass
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    args_model: Optional[Type[BaseModel]] = Field(default=None, exclude=True)
    handler: ToolHandler = Field(exclude=True)

    @classmethod
    def from_args_model(
        cls,
        name: str,
        plugin: str,
        args_model: Type[BaseModel],
        handler: ToolHandler,
        risk_class: RiskClass,
        description: Optional[str] = None,
    ) -> "ToolDescriptor":
        return cls(
            name=name,
            plugin=plugin,
            description=description or (args_model.__doc__ or "").strip(),
            risk_class=risk_class,
            input_schema=args_model.model_json_schema(),
            args_model=args_model,
            handler=handler,
        )

    def validate_args(self, args: Dict[str, Any]) -> ToolArgs:
        if self.args_model is not None:
            try:
                return self.args_model.model_validate(args)
            except ValidationError as e:
                raise InvalidToolArgumentsError(
                    f"Invalid arguments for tool '{self.name}': {e.error_count()} error(s)",
                    detail={"errors": e.errors(include_url=False)},
                ) from e

        problems = sorted(Draft202012Validator(self.input_schema).iter_errors(args), key=lambda err: list(err.path))
        if problems:
            raise InvalidToolArgumentsError(
                f"Invalid arguments for tool '{self.name}': {problems[0].message}",
                detail={"errors": [p.message for p in problems]},
            )
        return dict(args)

    def to_model_tool(self) -> Dict[str, Any]:
        """Tool definition as offered to the model service."""
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


class ToolGateway:
    """Thread-safe registry of plugin tools with permission-checked invocation."""

    def __init__(self, default_timeout: float = config.TOOL_TIMEOUT):
        self.default_timeout = default_timeout
        self._lock = threading.RLock()
        self._tools: Dict[Tuple[str, str], ToolDescriptor] = {}  # (plugin, tool) -> descriptor
        self._owners: Dict[str, str] = {}  # tool name -> plugin that serves it

    # --- registration -----------------------------------------------------

    def register_plugin(self, plugin: str, descriptors: Iterable[ToolDescriptor]):
        """Register (or re-register) every tool of a plugin atomically."""
        descriptors = list(descriptors)
        for d in descriptors:
            if d.plugin != plugin:
                raise ValueError(f"Tool '{d.name}' belongs to plugin '{d.plugin}', not '{plugin}'")

        with self._lock:
            self._remove_plugin_locked(plugin)
            for d in descriptors:
                current = self._owners.get(d.name)
                if current and current != plugin:
                    logger.warning(f"[gateway] Tool name conflict for '{d.name}': {current} -> {plugin} (overwriting)")
                self._tools[(plugin, d.name)] = d
                self._owners[d.name] = plugin
        logger.info(f"[gateway] Registered plugin '{plugin}' with {len(descriptors)} tools")

    def deregister_plugin(self, plugin: str) -> bool:
        with self._lock:
            removed = self._remove_plugin_locked(plugin)
        if removed:
            logger.info(f"[gateway] Deregistered plugin '{plugin}'")
        return removed

    def _remove_plugin_locked(self, plugin: str) -> bool:
        keys = [key for key in self._tools if key[0] == plugin]
        for key in keys:
            del self._tools[key]
            tool_name = key[1]
            if self._owners.get(tool_name) == plugin:
                # Hand the name back to another plugin that still offers it
                fallback = next((p for (p, t) in self._tools if t == tool_name), None)
                if fallback:
                    self._owners[tool_name] = fallback
                else:
                    del self._owners[tool_name]
        return bool(keys)

    def plugins(self) -> List[str]:
        with self._lock:
            return sorted({plugin for (plugin, _) in self._tools})

    # --- lookup -----------------------------------------------------------

    def get(self, tool_name: str) -> ToolDescriptor:
        with self._lock:
            plugin = self._owners.get(tool_name)
            if plugin is None:
                raise ToolNotFoundError(f"Tool '{tool_name}' not found in any registered plugin")
            return self._tools[(plugin, tool_name)]

    def list_tools(self, allowed_risk_classes: Optional[FrozenSet[RiskClass]] = None) -> List[ToolDescriptor]:
        with self._lock:
            tools = [self._tools[(plugin, name)] for name, plugin in self._owners.items()]
        if allowed_risk_classes is not None:
            tools = [t for t in tools if t.risk_class in allowed_risk_classes]
        return sorted(tools, key=lambda t: t.name)

    def model_tools(self, allowed_risk_classes: FrozenSet[RiskClass]) -> List[Dict[str, Any]]:
        return [t.to_model_tool() for t in self.list_tools(allowed_risk_classes)]

    # --- invocation -------------------------------------------------------

    def check_permission(
        self,
        descriptor: ToolDescriptor,
        allowed_risk_classes: FrozenSet[RiskClass],
        session: Optional[Session],
    ):
        if descriptor.risk_class not in allowed_risk_classes:
            allowed = ", ".join(sorted(r.value for r in allowed_risk_classes)) or "none"
            raise ToolPermissionError(
                f"Tool '{descriptor.name}' is {descriptor.risk_class.value}; allowed risk classes here: {allowed}",
                detail={"tool": descriptor.name, "risk_class": descriptor.risk_class.value},
            )
        if descriptor.risk_class == RiskClass.MUTATING and (session is None or session.approval_grant() is None):
            raise ToolPermissionError(
                f"Tool '{descriptor.name}' mutates the cluster and no approval has been recorded in the session history",
                detail={"tool": descriptor.name, "risk_class": descriptor.risk_class.value},
            )

    async def invoke(
        self,
        tool_name: str,
        args: Dict[str, Any],
        allowed_risk_classes: FrozenSet[RiskClass],
        *,
        timeout: Optional[float] = None,
        session: Optional[Session] = None,
    ) -> ToolInvocationRecord:
        """Run a tool once. Never retried here.

        Raises ToolNotFoundError, ToolPermissionError or
        InvalidToolArgumentsError before anything runs. Execution failures and
        timeouts come back as an unsuccessful record instead.
        """
        descriptor = self.get(tool_name)
        self.check_permission(descriptor, allowed_risk_classes, session)
        validated = descriptor.validate_args(args or {})

        timeout = timeout if timeout is not None else self.default_timeout
        record = ToolInvocationRecord(
            tool=descriptor.name,
            plugin=descriptor.plugin,
            args=dict(args or {}),
            started_at=utcnow(),
            phase=session.phase if session is not None else None,
        )
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(descriptor.handler(validated), timeout=timeout)
            record.success = result.success
            record.output = result.output
            record.error = result.error
            record.command = result.command
        except (asyncio.TimeoutError, ToolTimeoutError):
            record.timed_out = True
            record.error = f"Tool '{tool_name}' timed out after {timeout}s"
            logger.warning(f"[gateway] {record.error}")
        except OpsAgentError as e:
            record.error = e.message
            logger.warning(f"[gateway] Tool '{tool_name}' failed: {e.message}")
        except Exception as e:
            record.error = f"{type(e).__name__}: {e}"
            logger.exception(f"[gateway] Tool '{tool_name}' raised unexpectedly")
        finally:
            record.duration_ms = int((time.monotonic() - start) * 1000)

        return record
