import hashlib
import json
import re
from typing import Any, Dict, List, Optional, Tuple, Union

import pytest
import yaml

from ops_agent.backoff import BackoffConfig
from ops_agent.cluster import KubectlResult
from ops_agent.errors import TransientServiceError
from ops_agent.llm import ModelResponse, ToolCall
from ops_agent.state import ApprovalGrant, PhaseTransition, Session, SessionContext, utcnow
from ops_agent.tools import KubectlPlugin, ToolGateway

NO_JITTER = BackoffConfig(initial_delay=1.0, multiplier=2.0, max_delay=30.0, jitter=0.0)

EMBED_DIMS = 64


def embed_text(text: str) -> List[float]:
    """Bag-of-words vector: texts sharing words point the same way."""
    vector = [0.0] * EMBED_DIMS
    for token in re.findall(r"[a-z0-9]+", text.lower()):
        bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % EMBED_DIMS
        vector[bucket] += 1.0
    return vector


def reply(content: Union[str, dict] = "", tool_calls: Optional[List[Tuple[str, dict]]] = None) -> ModelResponse:
    if isinstance(content, dict):
        content = json.dumps(content)
    calls = [ToolCall(id=f"call-{i}", name=name, arguments=args) for i, (name, args) in enumerate(tool_calls or [])]
    return ModelResponse(content=content, tool_calls=calls)


def make_session(kind, phase, approved=False):
    """A session sitting in `phase`, optionally with a user approval in its history."""
    history = [PhaseTransition(to_phase=phase)]
    if approved:
        history.append(PhaseTransition(from_phase=phase, to_phase=phase, approval=ApprovalGrant(granted_by='user')))
    return Session(id="s-1", kind=kind, phase=phase, history=history,
                   context=SessionContext(intent="x"), expires_at=utcnow())


class FakeModelService:
    """Scripted chat replies, deterministic embeddings."""

    def __init__(self, responses: Optional[List[ModelResponse]] = None, default: Optional[ModelResponse] = None):
        self.responses = list(responses or [])
        self.default = default
        self.requests: List[Dict[str, Any]] = []
        self.embedded: List[str] = []
        self.embed_failures = 0
        self.send_failures = 0

    def queue(self, *responses: ModelResponse):
        self.responses.extend(responses)

    async def send_message(self, messages, tools):
        self.requests.append({"messages": list(messages), "tools": list(tools)})
        if self.send_failures:
            self.send_failures -= 1
            raise TransientServiceError("model service unavailable")
        if self.responses:
            return self.responses.pop(0)
        if self.default is not None:
            return self.default
        raise AssertionError(f"Unexpected model call #{len(self.requests)}")

    async def embed(self, text):
        if self.embed_failures:
            self.embed_failures -= 1
            raise TransientServiceError("embedding service unavailable")
        self.embedded.append(text)
        return embed_text(text)


def _positional(args: List[str]) -> List[str]:
    """Arguments that are neither flags nor flag values."""
    positional = []
    skip = False
    for arg in args:
        if skip:
            skip = False
            continue
        if arg in ("-n", "-o", "-l", "-c", "-f", "-p"):
            skip = True
            continue
        if arg.startswith("-"):
            continue
        positional.append(arg)
    return positional


def _flag(args: List[str], flag: str) -> Optional[str]:
    if flag in args:
        i = args.index(flag)
        return args[i + 1] if i + 1 < len(args) else None
    return None


class FakeCluster:
    """In-memory stand-in for kubectl.

    apply stores objects (dry runs store nothing), get returns them as JSON.
    Scripted outcomes win over the built-in behaviour for matching argv prefixes.
    """

    def __init__(self):
        self.calls: List[Tuple[List[str], Optional[str]]] = []
        self.objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self.unready_kinds = set()
        self._scripts: List[Dict[str, Any]] = []

    def script(self, *prefix: str, stdout: str = "", stderr: str = "", returncode: int = 0,
               error: Optional[Exception] = None, times: Optional[int] = None):
        self._scripts.append({
            "prefix": tuple(prefix), "stdout": stdout, "stderr": stderr,
            "returncode": returncode, "error": error, "times": times,
        })

    def calls_for(self, verb: str) -> List[List[str]]:
        return [args for args, _ in self.calls if args and args[0] == verb]

    async def run(self, args, stdin=None, timeout=None):
        args = list(args)
        self.calls.append((args, stdin))

        for script in self._scripts:
            if tuple(args[:len(script["prefix"])]) != script["prefix"]:
                continue
            if script["times"] is not None:
                if script["times"] <= 0:
                    continue
                script["times"] -= 1
            if script["error"] is not None:
                raise script["error"]
            return KubectlResult(args=args, returncode=script["returncode"],
                                 stdout=script["stdout"], stderr=script["stderr"])

        if args and args[0] == "apply":
            return self._apply(args, stdin)
        if args and args[0] == "get":
            return self._get(args)
        return KubectlResult(args=args, returncode=0, stdout="ok")

    def _apply(self, args, stdin):
        source = _flag(args, "-f")
        if source == "-":
            text = stdin or ""
        else:
            with open(source, encoding="utf-8") as f:
                text = f.read()
        names = []
        dry_run = any(a.startswith("--dry-run") for a in args)
        for doc in yaml.safe_load_all(text):
            if not doc:
                continue
            kind = doc["kind"].lower()
            metadata = doc.get("metadata") or {}
            namespace = _flag(args, "-n") or metadata.get("namespace") or "default"
            names.append(f"{kind}/{metadata['name']}")
            if dry_run:
                continue
            obj = json.loads(json.dumps(doc))
            obj.setdefault("metadata", {})["generation"] = 1
            obj["status"] = {} if kind in self.unready_kinds else self._ready_status(kind, obj)
            self.objects[(kind, namespace, metadata["name"])] = obj
        suffix = " (server dry run)" if dry_run else ""
        return KubectlResult(args=args, returncode=0, stdout="\n".join(n + suffix for n in names))

    @staticmethod
    def _ready_status(kind, obj):
        replicas = (obj.get("spec") or {}).get("replicas", 1)
        if kind in ("deployment", "statefulset"):
            return {"observedGeneration": 1, "readyReplicas": replicas, "updatedReplicas": replicas}
        return {"conditions": [{"type": "Ready", "status": "True"}]}

    def _get(self, args):
        positional = _positional(args)
        kind = positional[1].split(".")[0].lower() if len(positional) > 1 else ""
        namespace = _flag(args, "-n") or "default"
        if len(positional) > 2:
            obj = self.objects.get((kind, namespace, positional[2]))
            if obj is None:
                return KubectlResult(args=args, returncode=1,
                                     stderr=f'Error from server (NotFound): {kind} "{positional[2]}" not found')
            return KubectlResult(args=args, returncode=0, stdout=json.dumps(obj))
        items = [o for (k, ns, _), o in self.objects.items() if k in (kind, kind.rstrip("s")) and ns == namespace]
        return KubectlResult(args=args, returncode=0, stdout=json.dumps({"items": items}))


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def model():
    return FakeModelService()


@pytest.fixture
def gateway(cluster):
    gw = ToolGateway(default_timeout=5)
    KubectlPlugin(cluster).register(gw)
    return gw


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def sleep(delay):
        sleeps.append(delay)
    return sleep
