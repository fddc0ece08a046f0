"""
Bounded model/tool loop.

    model -> (tool calls?) -> tools -> model -> ... -> final answer

Built as a small LangGraph graph: the 'model' node asks the model service for
the next turn, the 'tools' node dispatches each requested call through the
ToolGateway in order and folds the results back into the conversation. The
loop fails with ToolLoopExhaustedError after max_iterations model turns.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, TypedDict

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, START, StateGraph
from pydantic import BaseModel

from . import config
from .backoff import BackoffConfig, with_retry
from .errors import (
    InvalidToolArgumentsError,
    ToolLoopExhaustedError,
    ToolNotFoundError,
    ToolPermissionError,
)
from .llm import ModelService, ToolCall
from .state import RiskClass, Session, ToolInvocationRecord
from .tools.gateway import ToolGateway

logger = logging.getLogger(__name__)

# Errors the model caused by asking for the wrong thing; it gets told and may try again
_REFUSALS = (ToolPermissionError, ToolNotFoundError, InvalidToolArgumentsError)


class ToolLoopState(TypedDict):
    messages: List[Dict[str, Any]]
    iterations: int
    pending_calls: List[ToolCall]
    invocations: List[ToolInvocationRecord]
    final_content: Optional[str]


class ToolLoopResult(BaseModel):
    content: str
    invocations: List[ToolInvocationRecord] = []
    iterations: int = 0


def _assistant_message(content: str, calls: List[ToolCall]) -> Dict[str, Any]:
    message: Dict[str, Any] = {"role": "assistant", "content": content}
    if calls:
        message["tool_calls"] = [
            {"id": c.id, "type": "function", "function": {"name": c.name, "arguments": json.dumps(c.arguments)}}
            for c in calls
        ]
    return message


def _tool_message(call: ToolCall, record: ToolInvocationRecord) -> Dict[str, Any]:
    if record.success:
        content = record.output or "(no output)"
    elif record.timed_out:
        content = f"TIMEOUT: {record.error}"
    else:
        content = f"ERROR: {record.error}"
    return {"role": "tool", "tool_call_id": call.id, "name": call.name, "content": content}


class ToolLoop:
    def __init__(
        self,
        model: ModelService,
        gateway: ToolGateway,
        max_iterations: int = config.MAX_TOOL_ITERATIONS,
        tool_timeout: float = config.TOOL_TIMEOUT,
        retry_count: int = config.RETRY_COUNT,
        backoff: Optional[BackoffConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.model = model
        self.gateway = gateway
        self.max_iterations = max_iterations
        self.tool_timeout = tool_timeout
        self.retry_count = retry_count
        self.backoff = backoff or BackoffConfig()
        self._sleep = sleep

    def _build_graph(self, allowed: FrozenSet[RiskClass], session: Optional[Session]):
        tools = self.gateway.model_tools(allowed)
        phase = session.phase if session is not None else None

        async def model_node(state: ToolLoopState) -> Dict[str, Any]:
            if state["iterations"] >= self.max_iterations:
                raise ToolLoopExhaustedError(
                    f"No final answer after {self.max_iterations} model turns",
                    detail={"phase": phase.value if phase else None},
                )
            response = await with_retry(
                lambda: self.model.send_message(state["messages"], tools),
                retry_count=self.retry_count,
                backoff=self.backoff,
                label="model turn",
                sleep=self._sleep,
            )
            messages = state["messages"] + [_assistant_message(response.content, response.tool_calls)]
            update: Dict[str, Any] = {
                "messages": messages,
                "iterations": state["iterations"] + 1,
                "pending_calls": response.tool_calls,
            }
            if not response.tool_calls:
                update["final_content"] = response.content
            return update

        async def tools_node(state: ToolLoopState) -> Dict[str, Any]:
            messages = list(state["messages"])
            invocations = list(state["invocations"])
            # One at a time, in the order the model asked for them
            for call in state["pending_calls"]:
                try:
                    record = await self.gateway.invoke(
                        call.name,
                        call.arguments,
                        allowed,
                        timeout=self.tool_timeout,
                        session=session,
                    )
                except _REFUSALS as e:
                    logger.info(f"[tool-loop] Refused {call.name}: {e.message}")
                    record = ToolInvocationRecord(tool=call.name, args=call.arguments, error=e.message, phase=phase)
                invocations.append(record)
                messages.append(_tool_message(call, record))
            return {"messages": messages, "invocations": invocations, "pending_calls": []}

        def route(state: ToolLoopState) -> str:
            return "tools" if state["pending_calls"] else "done"

        workflow = StateGraph(ToolLoopState)
        workflow.add_node("model", model_node)
        workflow.add_node("tools", tools_node)
        workflow.add_edge(START, "model")
        workflow.add_conditional_edges("model", route, {"tools": "tools", "done": END})
        workflow.add_edge("tools", "model")
        return workflow.compile()

    async def run(
        self,
        messages: List[Dict[str, Any]],
        allowed_risk_classes: FrozenSet[RiskClass],
        *,
        session: Optional[Session] = None,
    ) -> ToolLoopResult:
        graph = self._build_graph(allowed_risk_classes, session)
        initial: ToolLoopState = {
            "messages": list(messages),
            "iterations": 0,
            "pending_calls": [],
            "invocations": [],
            "final_content": None,
        }
        try:
            final = await graph.ainvoke(initial, config={"recursion_limit": 2 * self.max_iterations + 2})
        except GraphRecursionError as e:
            raise ToolLoopExhaustedError(f"Tool loop did not converge: {e}") from e

        logger.debug(
            f"[tool-loop] {session.phase.value if session else 'loop'} finished after {final['iterations']} turns, "
            f"{len(final['invocations'])} tool calls"
        )
        return ToolLoopResult(
            content=final["final_content"] or "",
            invocations=final["invocations"],
            iterations=final["iterations"],
        )
