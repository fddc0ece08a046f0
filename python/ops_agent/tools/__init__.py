"""
Tools package for the ops agent.

Contains:
- gateway: the ToolGateway registry and permission-checked invocation
- kubectl: built-in kubectl plugin (SafeExecutor-backed)
- plugins: remote HTTP plugins and background discovery
"""

from .gateway import ToolDescriptor, ToolGateway, ToolOutput
from .kubectl import KubectlPlugin
from .plugins import PluginClient, PluginConfig, PluginDiscovery, load_plugin_configs

__all__ = [
    'ToolDescriptor', 'ToolGateway', 'ToolOutput',
    'KubectlPlugin',
    'PluginClient', 'PluginConfig', 'PluginDiscovery', 'load_plugin_configs',
]
