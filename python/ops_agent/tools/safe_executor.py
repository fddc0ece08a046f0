from typing import List, Optional, Tuple, Union

import yaml

from .definitions import (
    KubectlApiResources, KubectlApply, KubectlApplyDryRun, KubectlDelete, KubectlDescribe,
    KubectlEvents, KubectlExplain, KubectlGet, KubectlGetResourceJson, KubectlLogs,
    KubectlPatch, KubectlRollout, KubectlScale, KubectlSetResources,
)

ToolType = Union[
    KubectlGet, KubectlDescribe, KubectlLogs, KubectlEvents, KubectlGetResourceJson,
    KubectlApiResources, KubectlExplain, KubectlApplyDryRun,
    KubectlApply, KubectlDelete, KubectlRollout, KubectlScale, KubectlSetResources, KubectlPatch,
]


def _namespace_args(namespace: Optional[str], all_namespaces: bool = False) -> List[str]:
    if all_namespaces:
        return ["-A"]
    if namespace:
        return ["-n", namespace]
    return []


class SafeExecutor:
    """Translates Pydantic tool models into kubectl argument vectors.

    Guarantees:
    1. No shell: the runner execs argv directly, so names and selectors are never interpreted.
    2. No syntax errors: flags are built programmatically.
    3. No hallucinated flags: only flags defined here are used.
    """

    @staticmethod
    def build_args(tool: ToolType) -> Tuple[List[str], Optional[str]]:
        """Return (kubectl args without the binary, stdin payload or None)."""

        if isinstance(tool, KubectlGet):
            args = ["get", tool.resource] + _namespace_args(tool.namespace, tool.all_namespaces)
            if tool.selector:
                args += ["-l", tool.selector]
            if tool.field_selector:
                args.append(f"--field-selector={tool.field_selector}")
            # Structured output for the model
            args += ["-o", "json"]
            return args, None

        if isinstance(tool, KubectlDescribe):
            return ["describe", tool.resource, tool.name] + _namespace_args(tool.namespace), None

        if isinstance(tool, KubectlLogs):
            args = ["logs", tool.pod_name] + _namespace_args(tool.namespace)
            if tool.container:
                args += ["-c", tool.container]
            if tool.previous:
                args.append("-p")
            args.append(f"--tail={tool.tail}")
            return args, None

        if isinstance(tool, KubectlEvents):
            args = ["get", "events"] + _namespace_args(tool.namespace, tool.all_namespaces)
            selectors = []
            if tool.only_warnings:
                selectors.append("type=Warning")
            if tool.related_object:
                selectors.append(f"involvedObject.name={tool.related_object}")
            if selectors:
                args.append(f"--field-selector={','.join(selectors)}")
            args.append("--sort-by=.lastTimestamp")
            return args, None

        if isinstance(tool, KubectlGetResourceJson):
            return ["get", tool.resource, tool.name] + _namespace_args(tool.namespace) + ["-o", "json"], None

        if isinstance(tool, KubectlApiResources):
            args = ["api-resources"]
            if tool.verbs:
                args.append(f"--verbs={tool.verbs}")
            if tool.api_group is not None:
                args.append(f"--api-group={tool.api_group}")
            if tool.namespaced is not None:
                args.append(f"--namespaced={str(tool.namespaced).lower()}")
            args += ["-o", "wide"]
            return args, None

        if isinstance(tool, KubectlExplain):
            args = ["explain", tool.resource]
            if tool.recursive:
                args.append("--recursive")
            if tool.api_version:
                args.append(f"--api-version={tool.api_version}")
            return args, None

        if isinstance(tool, KubectlApplyDryRun):
            args = ["apply", f"--dry-run={tool.mode}", "-o", "name"] + _namespace_args(tool.namespace) + ["-f", "-"]
            return args, tool.yaml_content

        if isinstance(tool, KubectlApply):
            args = ["apply"] + _namespace_args(tool.namespace)
            if tool.file_path:
                return args + ["-f", tool.file_path], None
            return args + ["-f", "-"], tool.yaml_content

        if isinstance(tool, KubectlDelete):
            return ["delete", tool.resource, tool.name] + _namespace_args(tool.namespace), None

        if isinstance(tool, KubectlRollout):
            return ["rollout", tool.action, f"{tool.resource}/{tool.name}"] + _namespace_args(tool.namespace), None

        if isinstance(tool, KubectlScale):
            args = ["scale", f"{tool.resource}/{tool.name}", f"--replicas={tool.replicas}"]
            return args + _namespace_args(tool.namespace), None

        if isinstance(tool, KubectlSetResources):
            args = ["set", "resources", f"{tool.resource}/{tool.name}", "-c", tool.container]
            if tool.requests:
                args.append(f"--requests={tool.requests}")
            if tool.limits:
                args.append(f"--limits={tool.limits}")
            return args + _namespace_args(tool.namespace), None

        if isinstance(tool, KubectlPatch):
            args = ["patch", tool.resource, tool.name, f"--type={tool.patch_type}", "-p", tool.patch]
            return args + _namespace_args(tool.namespace), None

        raise ValueError(f"Unknown tool type: {type(tool)}")

    @staticmethod
    def get_verification_args(tool: ToolType) -> Optional[List[str]]:
        """Returns read-only kubectl args that show the effect of a mutation."""

        if isinstance(tool, (KubectlDelete, KubectlScale, KubectlSetResources, KubectlPatch)):
            return ["get", tool.resource, tool.name] + _namespace_args(tool.namespace) + ["-o", "json"]

        if isinstance(tool, KubectlRollout):
            # Rollout status can block; only sample it
            args = ["rollout", "status", f"{tool.resource}/{tool.name}"] + _namespace_args(tool.namespace)
            return args + ["--watch=false"]

        if isinstance(tool, KubectlApply) and tool.yaml_content:
            try:
                doc = yaml.safe_load(tool.yaml_content)
            except yaml.YAMLError:
                return None
            if not isinstance(doc, dict):
                return None
            kind = str(doc.get('kind', '')).lower()
            metadata = doc.get('metadata') or {}
            name = metadata.get('name')
            if kind and name:
                namespace = tool.namespace or metadata.get('namespace')
                return ["get", kind, name] + _namespace_args(namespace) + ["-o", "json"]

        return None
