"""
HTTP adapter over the session engine.

    POST   /sessions                  create a recommendation or remediation session
    POST   /sessions/{id}/advance     run the session to its next checkpoint
    GET    /sessions/{id}             current state
    DELETE /sessions/{id}
    GET    /tools                     registered tools (optionally filtered by risk class)
    GET    /capabilities/search       ranked capability lookup
    POST   /capabilities/scan         (re)index cluster resource types
    GET    /health
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import config
from .capabilities import CapabilityIndex, CapabilityScanner, InMemoryVectorStore, SearchFilters
from .cluster import KubectlRunner
from .deploy import DeployOperation
from .engine import SessionEngine
from .errors import OpsAgentError
from .llm import HttpModelClient
from .session_store import SessionStore
from .state import ExecutionMode, RiskClass, WorkflowKind
from .tools import KubectlPlugin, PluginDiscovery, ToolGateway, load_plugin_configs
from .validation import ManifestValidator

logger = logging.getLogger(__name__)

PRUNE_INTERVAL = 300

STATUS_BY_CATEGORY = {
    "validation": 400,
    "permission": 403,
    "timeout": 504,
    "transient": 503,
}

STATUS_BY_KIND = {
    "SessionNotFoundError": 404,
    "ManifestNotFoundError": 404,
    "ToolNotFoundError": 404,
    "SessionExpiredError": 410,
    "SessionDirectoryMissingError": 409,
}


def status_for(error: OpsAgentError) -> int:
    return STATUS_BY_KIND.get(error.kind) or STATUS_BY_CATEGORY.get(error.category, 500)


class CreateSessionRequest(BaseModel):
    kind: WorkflowKind
    intent: str
    mode: ExecutionMode = ExecutionMode.MANUAL
    confidence_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)


class AdvanceRequest(BaseModel):
    payload: Optional[Dict[str, Any]] = None


class ScanRequest(BaseModel):
    resources: Optional[List[str]] = None


def create_app(
    engine: SessionEngine,
    discovery: Optional[PluginDiscovery] = None,
    scanner: Optional[CapabilityScanner] = None,
    prune_interval: float = PRUNE_INTERVAL,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("[server] Ops agent starting...")
        if discovery is not None:
            discovery.start()

        async def prune_loop():
            while True:
                await asyncio.sleep(prune_interval)
                try:
                    engine.prune_expired()
                except OSError as e:
                    logger.warning(f"[server] Session pruning failed: {e}")

        prune_task = asyncio.create_task(prune_loop())
        yield
        logger.info("[server] Ops agent shutting down...")
        prune_task.cancel()
        try:
            await prune_task
        except asyncio.CancelledError:
            pass
        if discovery is not None:
            await discovery.stop()

    app = FastAPI(
        title="Ops Agent",
        description="Recommendation and remediation workflows for Kubernetes",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.exception_handler(OpsAgentError)
    async def ops_agent_error_handler(request: Request, exc: OpsAgentError):
        return JSONResponse(status_code=status_for(exc), content={"error": exc.to_dict()})

    @app.get("/health")
    async def health_check():
        """Always 200 while the process is up."""
        return {"status": "ok", "plugins": engine.gateway.plugins()}

    @app.post("/sessions", status_code=201)
    async def create_session(request: CreateSessionRequest):
        session = engine.create_session(
            request.kind,
            request.intent,
            mode=request.mode,
            confidence_threshold=request.confidence_threshold,
        )
        return session.model_dump(mode="json")

    @app.post("/sessions/{session_id}/advance")
    async def advance_session(session_id: str, request: Optional[AdvanceRequest] = None):
        session = await engine.advance(session_id, request.payload if request else None)
        return session.model_dump(mode="json")

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str):
        return engine.get_session(session_id).model_dump(mode="json")

    @app.delete("/sessions/{session_id}")
    async def delete_session(session_id: str):
        engine.delete_session(session_id)
        return {"status": "success", "message": f"Session {session_id} deleted"}

    @app.get("/tools")
    async def list_tools(risk_class: Optional[RiskClass] = None):
        allowed = frozenset({risk_class}) if risk_class else None
        return [
            {
                "name": d.name,
                "plugin": d.plugin,
                "description": d.description,
                "risk_class": d.risk_class.value,
                "input_schema": d.input_schema,
            }
            for d in engine.gateway.list_tools(allowed)
        ]

    @app.get("/capabilities/search")
    async def search_capabilities(
        q: str,
        limit: int = Query(config.CAPABILITY_SEARCH_LIMIT, ge=1, le=100),
        group: Optional[str] = None,
        verb: Optional[str] = None,
        complexity: Optional[Literal['low', 'medium', 'high']] = None,
        provider: Optional[str] = None,
    ):
        filters = SearchFilters(group=group, verb=verb, complexity=complexity, provider=provider)
        matches = await engine.index.search(q, filters=filters, limit=limit)
        return [m.summary() for m in matches]

    @app.post("/capabilities/scan")
    async def scan_capabilities(request: ScanRequest):
        if scanner is None:
            return JSONResponse(status_code=501, content={"error": {"message": "Capability scanning is not configured"}})
        summary = await scanner.scan(request.resources)
        return summary.model_dump()

    return app


def build_engine() -> SessionEngine:
    """Default wiring: kubectl on PATH, an OpenAI-compatible model service."""
    cluster = KubectlRunner()
    model = HttpModelClient()
    gateway = ToolGateway()
    KubectlPlugin(cluster).register(gateway)
    index = CapabilityIndex(model, InMemoryVectorStore())
    validator = ManifestValidator(cluster)
    return SessionEngine(
        store=SessionStore(),
        model=model,
        gateway=gateway,
        index=index,
        validator=validator,
        deployer=DeployOperation(gateway),
    )


def main():
    import uvicorn

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    engine = build_engine()
    discovery = PluginDiscovery(engine.gateway, load_plugin_configs())
    scanner = CapabilityScanner(engine.gateway, engine.index, engine.model)
    app = create_app(engine, discovery=discovery, scanner=scanner)
    uvicorn.run(app, host=config.SERVER_HOST, port=config.SERVER_PORT)


if __name__ == "__main__":
    main()
