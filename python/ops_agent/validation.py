"""
Manifest Validator.

Structural checks locally, then `kubectl apply --dry-run=server` so the live
API server checks the manifest against its real schema (CRDs included).
Dry-run never persists anything.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import yaml

from . import config
from .cluster import ClusterClient
from .state import ManifestValidationResult, ValidationIssue

logger = logging.getLogger(__name__)

_UNKNOWN_FIELD = re.compile(r'unknown field "([^"]+)"')
_REQUIRED_FIELD = re.compile(r'([\w.\[\]/-]+): Required value')
_MISSING_IN_OBJECT = re.compile(r'missing required field "([^"]+)"')
_TYPE_MISMATCH = re.compile(r'cannot unmarshal (\w+) into Go (?:struct field|value) ([\w.\[\]]+)?')


def load_documents(manifest: str) -> List[Any]:
    """All non-empty YAML documents. Raises yaml.YAMLError."""
    return [doc for doc in yaml.safe_load_all(manifest) if doc is not None]


def classify_dry_run_error(line: str) -> Tuple[str, Optional[str]]:
    """(issue code, field path) for one kubectl error line."""
    match = _UNKNOWN_FIELD.search(line)
    if match:
        return "unknown_field", match.group(1)
    match = _REQUIRED_FIELD.search(line) or _MISSING_IN_OBJECT.search(line)
    if match:
        return "missing_field", match.group(1)
    if "required field" in line.lower():
        return "missing_field", None
    match = _TYPE_MISMATCH.search(line)
    if match:
        return "type_mismatch", match.group(2)
    return "dry_run_failed", None


def best_practice_warnings(doc: Dict[str, Any], index: int) -> List[ValidationIssue]:
    warnings = []
    metadata = doc.get("metadata") or {}
    kind = str(doc.get("kind", ""))
    if not metadata.get("labels"):
        warnings.append(ValidationIssue(
            code="missing_labels",
            message=f"{kind} {metadata.get('name', '')}: consider adding metadata.labels for better resource organization",
            document=index,
            path="metadata.labels",
        ))
    if not metadata.get("namespace") and kind.lower() not in config.CLUSTER_SCOPED_KINDS:
        warnings.append(ValidationIssue(
            code="missing_namespace",
            message=f"{kind} {metadata.get('name', '')}: consider specifying metadata.namespace for better resource isolation",
            document=index,
            path="metadata.namespace",
        ))
    return warnings


def structural_errors(doc: Any, index: int) -> List[ValidationIssue]:
    if not isinstance(doc, dict):
        return [ValidationIssue(
            code="type_mismatch",
            message=f"Document {index} is a {type(doc).__name__}, expected a mapping",
            document=index,
        )]
    errors = []
    for field in ("apiVersion", "kind"):
        if not doc.get(field):
            errors.append(ValidationIssue(code="missing_field", message=f"Missing required field: {field}",
                                          document=index, path=field))
    metadata = doc.get("metadata")
    if not isinstance(metadata, dict) or not (metadata.get("name") or metadata.get("generateName")):
        errors.append(ValidationIssue(code="missing_field", message="Missing required field: metadata.name",
                                      document=index, path="metadata.name"))
    return errors


class ManifestValidator:
    def __init__(self, cluster: ClusterClient, dry_run_mode: str = "server", timeout: float = config.TOOL_TIMEOUT):
        self.cluster = cluster
        self.dry_run_mode = dry_run_mode
        self.timeout = timeout

    async def validate(self, manifest: str, cluster_context: Optional[str] = None) -> ManifestValidationResult:
        try:
            documents = load_documents(manifest)
        except yaml.YAMLError as e:
            return ManifestValidationResult(
                valid=False,
                errors=[ValidationIssue(code="parse_error", message=f"Invalid YAML: {e}")],
            )
        if not documents:
            return ManifestValidationResult(
                valid=False,
                errors=[ValidationIssue(code="parse_error", message="Manifest contains no objects")],
            )

        errors: List[ValidationIssue] = []
        for i, doc in enumerate(documents):
            errors.extend(structural_errors(doc, i))
        if errors:
            # The API server would only repeat these, less precisely
            return ManifestValidationResult(valid=False, errors=errors)

        warnings = [w for i, doc in enumerate(documents) for w in best_practice_warnings(doc, i)]

        args = []
        if cluster_context:
            args.append(f"--context={cluster_context}")
        args += ["apply", f"--dry-run={self.dry_run_mode}", "-o", "name", "-f", "-"]
        result = await self.cluster.run(args, stdin=manifest, timeout=self.timeout)

        for line in result.stderr.splitlines():
            line = line.strip()
            if line.lower().startswith("warning:"):
                warnings.append(ValidationIssue(code="server_warning", message=line[len("warning:"):].strip()))

        if not result.ok:
            seen = set()
            for line in result.stderr.splitlines():
                line = line.strip()
                if not line or line.lower().startswith("warning:") or line in seen:
                    continue
                seen.add(line)
                code, path = classify_dry_run_error(line)
                errors.append(ValidationIssue(code=code, message=line, path=path))
            if not errors:
                errors.append(ValidationIssue(
                    code="dry_run_failed",
                    message=f"Dry-run failed with exit code {result.returncode}",
                ))

        logger.info(f"[validator] {len(documents)} documents: {len(errors)} errors, {len(warnings)} warnings")
        return ManifestValidationResult(valid=not errors, errors=errors, warnings=warnings)
