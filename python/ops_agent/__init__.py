"""
Ops agent: recommendation and remediation workflows for Kubernetes.

The SessionEngine drives sessions through their phases; tools run through
the ToolGateway; resource types are found through the CapabilityIndex.
"""

from .engine import SessionEngine
from .errors import OpsAgentError
from .state import ExecutionMode, Phase, RiskClass, Session, WorkflowKind

__all__ = ['SessionEngine', 'OpsAgentError', 'ExecutionMode', 'Phase', 'RiskClass', 'Session', 'WorkflowKind']
