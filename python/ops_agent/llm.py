"""
Model service collaborator.

The core only needs two things from a model backend: a chat turn that may
request tool calls, and text embeddings. ModelService is that contract;
HttpModelClient implements it against an OpenAI-compatible chat endpoint and
an Ollama-style embeddings endpoint.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel

from . import config
from .errors import ModelServiceError, TransientServiceError

logger = logging.getLogger(__name__)

# Status codes worth another attempt
TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: Dict[str, Any] = {}


class ModelResponse(BaseModel):
    content: str = ""
    tool_calls: List[ToolCall] = []
    usage: Dict[str, int] = {}


class ModelService(Protocol):
    async def send_message(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> ModelResponse:
        ...

    async def embed(self, text: str) -> List[float]:
        ...


def _raise_for_status(response: httpx.Response, what: str):
    if response.status_code == 200:
        return
    message = f"{what} error ({response.status_code}): {response.text[:500]}"
    if response.status_code in TRANSIENT_STATUS_CODES:
        raise TransientServiceError(message, detail={"status": response.status_code})
    raise ModelServiceError(message, detail={"status": response.status_code})


class HttpModelClient:
    """OpenAI-compatible chat + Ollama embeddings over httpx."""

    def __init__(
        self,
        endpoint: str = config.LLM_HOST,
        model: str = config.LLM_MODEL,
        api_key: Optional[str] = config.LLM_API_KEY,
        embedding_endpoint: str = config.EMBEDDING_ENDPOINT,
        embedding_model: str = config.EMBEDDING_MODEL,
        temperature: float = config.LLM_TEMPERATURE,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint.rstrip('/')
        self.model = model
        self.api_key = api_key
        self.embedding_endpoint = embedding_endpoint.rstrip('/')
        self.embedding_model = embedding_model
        self.temperature = temperature
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _headers(self) -> Dict[str, str]:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    async def send_message(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> ModelResponse:
        url = self.endpoint if self.endpoint.endswith("/chat/completions") else f"{self.endpoint}/chat/completions"
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": 4096,
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t["name"],
                        "description": t.get("description", ""),
                        "parameters": t.get("input_schema") or {"type": "object", "properties": {}},
                    },
                }
                for t in tools
            ]

        logger.debug(f"[llm] chat request to {url} | model={self.model} | tools={len(tools)}")
        try:
            async with self._client() as client:
                response = await client.post(url, json=payload, headers=self._headers())
        except (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout, httpx.RemoteProtocolError) as e:
            raise TransientServiceError(f"Model service unreachable: {e}") from e

        _raise_for_status(response, "Model service")
        return self._parse_chat_response(response.json())

    @staticmethod
    def _parse_chat_response(data: Dict[str, Any]) -> ModelResponse:
        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise ModelServiceError(f"Malformed chat response: {e}") from e

        tool_calls = []
        for i, call in enumerate(message.get("tool_calls") or []):
            fn = call.get("function") or {}
            raw_args = fn.get("arguments") or "{}"
            try:
                args = json.loads(raw_args) if isinstance(raw_args, str) else dict(raw_args)
            except json.JSONDecodeError:
                # Keep the call; the gateway's argument validation reports the problem
                args = {"_raw": raw_args}
            tool_calls.append(ToolCall(id=call.get("id") or f"call-{i}", name=fn.get("name", ""), arguments=args))

        usage = {k: v for k, v in (data.get("usage") or {}).items() if isinstance(v, int)}
        return ModelResponse(content=message.get("content") or "", tool_calls=tool_calls, usage=usage)

    async def embed(self, text: str) -> List[float]:
        url = f"{self.embedding_endpoint}/api/embeddings"
        try:
            async with self._client() as client:
                response = await client.post(url, json={"model": self.embedding_model, "prompt": text})
        except (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout, httpx.RemoteProtocolError) as e:
            raise TransientServiceError(f"Embedding service unreachable: {e}") from e

        _raise_for_status(response, "Embedding service")
        embedding = response.json().get("embedding")
        if not embedding:
            raise ModelServiceError(f"Embedding service returned no vector for model {self.embedding_model}")
        return embedding
