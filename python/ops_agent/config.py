import os

# =============================================================================
# CONFIGURATION
# =============================================================================

_home = os.path.expanduser("~")
_base_dir = os.path.join(_home, ".ops-agent")

# ---- Sessions ----
SESSION_DIR = os.environ.get("OPS_AGENT_SESSION_DIR", os.path.join(_base_dir, "sessions"))
SESSION_TTL_MINUTES = int(os.environ.get("OPS_AGENT_SESSION_TTL_MINUTES", "60"))

# ---- Workflow bounds ----
MAX_TOOL_ITERATIONS = int(os.environ.get("OPS_AGENT_MAX_TOOL_ITERATIONS", "12"))
MAX_MANIFEST_ATTEMPTS = int(os.environ.get("OPS_AGENT_MAX_MANIFEST_ATTEMPTS", "3"))
MAX_SOLUTION_ATTEMPTS = int(os.environ.get("OPS_AGENT_MAX_SOLUTION_ATTEMPTS", "2"))
MAX_OUTPUT_LENGTH = 8000

# Auto mode skips the human checkpoint only when the risk score is below this
DEFAULT_CONFIDENCE_THRESHOLD = float(os.environ.get("OPS_AGENT_CONFIDENCE_THRESHOLD", "0.3"))

# Operator-backed solutions win over manual primitives within this score margin
OPERATOR_PREFERENCE_MARGIN = 0.1

RISK_LEVEL_SCORES = {
    'low': 0.2,
    'medium': 0.5,
    'high': 0.8,
}

# ---- Timeouts (seconds) ----
TOOL_TIMEOUT = float(os.environ.get("OPS_AGENT_TOOL_TIMEOUT", "30"))
DEPLOY_TIMEOUT = float(os.environ.get("OPS_AGENT_DEPLOY_TIMEOUT", "30"))
READINESS_POLL_INTERVAL = float(os.environ.get("OPS_AGENT_READINESS_POLL_INTERVAL", "2"))

# ---- Backoff / retry ----
RETRY_COUNT = int(os.environ.get("OPS_AGENT_RETRY_COUNT", "3"))
BACKOFF_INITIAL_DELAY = float(os.environ.get("OPS_AGENT_BACKOFF_INITIAL", "1.0"))
BACKOFF_MULTIPLIER = float(os.environ.get("OPS_AGENT_BACKOFF_MULTIPLIER", "2.0"))
BACKOFF_MAX_DELAY = float(os.environ.get("OPS_AGENT_BACKOFF_MAX", "30.0"))
BACKOFF_JITTER = float(os.environ.get("OPS_AGENT_BACKOFF_JITTER", "0.1"))

# ---- Model service ----
LLM_HOST = os.environ.get("LLM_HOST", "http://localhost:11434/v1")
LLM_MODEL = os.environ.get("LLM_MODEL", "llama3.1:8b")
LLM_API_KEY = os.environ.get("LLM_API_KEY")
LLM_TEMPERATURE = 0.2
EMBEDDING_MODEL = os.environ.get("OPS_AGENT_EMBED_MODEL", "nomic-embed-text")

# Cloud chat endpoints do not serve our embedding model; fall back to local Ollama
_is_cloud_llm = any(domain in LLM_HOST for domain in ["groq.com", "openai.com", "anthropic.com"])
if os.environ.get("OPS_AGENT_EMBED_ENDPOINT"):
    EMBEDDING_ENDPOINT = os.environ["OPS_AGENT_EMBED_ENDPOINT"]
elif _is_cloud_llm:
    EMBEDDING_ENDPOINT = "http://localhost:11434"
else:
    EMBEDDING_ENDPOINT = LLM_HOST.rstrip('/').removesuffix('/v1')

# ---- Capability search ----
CAPABILITY_SEARCH_LIMIT = 10
CAPABILITY_MIN_SCORE = 0.35
SEMANTIC_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3

# ---- Plugins ----
PLUGINS_CONFIG_PATH = os.environ.get("OPS_AGENT_PLUGINS_CONFIG", "/etc/ops-agent/plugins.json")
DISCOVERY_INTERVAL = float(os.environ.get("OPS_AGENT_DISCOVERY_INTERVAL", "300"))
PLUGIN_TIMEOUT = 30.0

# ---- Cluster ----
KUBECTL_BINARY = os.environ.get("OPS_AGENT_KUBECTL", "kubectl")
KUBE_CONTEXT = os.environ.get("OPS_AGENT_KUBE_CONTEXT", "")

# Kinds that have no readiness concept: applied == ready
NO_READINESS_KINDS = {
    'configmap', 'secret', 'service', 'serviceaccount', 'namespace',
    'role', 'rolebinding', 'clusterrole', 'clusterrolebinding',
    'networkpolicy', 'limitrange', 'resourcequota', 'storageclass',
    'ingressclass', 'priorityclass', 'poddisruptionbudget',
    'customresourcedefinition', 'horizontalpodautoscaler', 'ingress',
}

# Cluster-scoped kinds never get the "missing namespace" warning
CLUSTER_SCOPED_KINDS = {
    'namespace', 'node', 'persistentvolume', 'clusterrole', 'clusterrolebinding',
    'customresourcedefinition', 'storageclass', 'ingressclass', 'priorityclass',
    'mutatingwebhookconfiguration', 'validatingwebhookconfiguration',
}

# API groups shipped with Kubernetes itself; anything else is operator-provided
CORE_API_GROUPS = {
    '', 'apps', 'batch', 'autoscaling', 'policy', 'networking.k8s.io',
    'rbac.authorization.k8s.io', 'storage.k8s.io', 'apiextensions.k8s.io',
    'admissionregistration.k8s.io', 'coordination.k8s.io', 'discovery.k8s.io',
    'scheduling.k8s.io', 'node.k8s.io', 'certificates.k8s.io', 'events.k8s.io',
}

# ---- Server ----
SERVER_HOST = os.environ.get("OPS_AGENT_HOST", "0.0.0.0")
SERVER_PORT = int(os.environ.get("OPS_AGENT_PORT", "8765"))
LOG_LEVEL = os.environ.get("OPS_AGENT_LOG_LEVEL", "INFO")
