CAPABILITY_INFERENCE_PROMPT = """You are a Kubernetes platform expert cataloguing the resource types of a cluster.

Resource: {resource_name}
Kind: {kind}
API version: {api_version}
Scope: {scope}

Schema documentation (kubectl explain):
{definition}

Describe what this resource lets a user accomplish. Respond with JSON only:
{{
  "capabilities": ["short lowercase tags, e.g. postgresql, database, ingress"],
  "providers": ["cloud or platform providers it targets, e.g. aws, azure, kubernetes"],
  "abstractions": ["higher-level properties, e.g. high-availability, backup"],
  "complexity": "low | medium | high",
  "description": "one sentence",
  "use_case": "one sentence describing when to choose it",
  "confidence": 0.0-1.0
}}
"""

CLARIFY_PROMPT = """You are helping a user deploy something to their Kubernetes cluster.

User intent:
{intent}

Resource types in this cluster that look relevant (best first):
{matches}

You may call the read-only tools to inspect the cluster (existing namespaces,
storage classes, installed operators) before answering.

Decide whether the intent is specific enough to design a deployment. Respond
with JSON only:
{{
  "clarified_intent": "the intent restated precisely, with anything you verified",
  "missing_information": ["facts the user still has to provide"]
}}
"""

SOLUTIONS_PROMPT = """Design candidate solutions for this deployment intent.

Intent:
{intent}

Missing information still to be asked:
{missing}

Available resource types (only use these):
{matches}

RULES:
- A solution is a combination of resource types that together satisfy the intent.
- When an operator-provided resource (operator_backed: true) satisfies the intent,
  prefer it over assembling the same thing from core primitives.
- Score each solution from 0.0 to 1.0 for how well it fits the intent.

Respond with JSON only:
{{
  "solutions": [
    {{
      "id": "short-kebab-case-id",
      "description": "what gets deployed",
      "resources": [{{"kind": "Kind", "apiVersion": "group/version"}}],
      "score": 0.0-1.0,
      "reasoning": "why this fits"
    }}
  ]
}}
"""

QUESTIONS_PROMPT = """A solution has been chosen for the user's deployment.

Intent:
{intent}

Solution:
{solution}

Information still missing:
{missing}

Write the questions needed to generate the final manifests. Give every question a
sensible default when one exists. Respond with JSON only:
{{
  "questions": [
    {{
      "id": "snake_case_id",
      "question": "text shown to the user",
      "required": true,
      "default": "value or null"
    }}
  ]
}}
"""

MANIFEST_PROMPT = """Generate Kubernetes manifests for this solution.

Intent:
{intent}

Solution:
{solution}

Answers:
{answers}

RULES:
- Use only the resource kinds and apiVersions of the solution.
- Set metadata.name, metadata.namespace (for namespaced kinds) and metadata.labels on every object.
- Separate multiple objects with '---'.

Respond with a single ```yaml code block and nothing else.
"""

MANIFEST_REPAIR_PROMPT = """The manifest below failed server-side validation.

Manifest:
```yaml
{manifest}
```

Validation errors:
{errors}

Fix every error without changing the intent of the manifest. Respond with a
single ```yaml code block and nothing else.
"""

INVESTIGATE_PROMPT = """You are an Expert Kubernetes Investigator.

Reported issue:
{intent}

Investigate with the read-only tools available (get, describe, logs, events).
Gather evidence before concluding; do not guess resource names.

When you know the root cause, respond with JSON only:
{{
  "root_cause": "what is wrong and why",
  "confidence": 0.0-1.0,
  "risk": "low | medium | high",
  "actions": [
    {{
      "tool": "name of a mutating tool, e.g. kubectl_rollout",
      "args": {{"...": "tool arguments"}},
      "description": "what this action changes"
    }}
  ]
}}
Return an empty actions list if nothing should be changed.
"""

VERIFY_PROMPT = """Remediation actions were executed for this issue.

Issue:
{intent}

Root cause:
{root_cause}

Executed actions:
{actions}

Use the tools to check whether the issue is resolved. Respond with JSON only:
{{
  "resolved": true,
  "summary": "what you verified"
}}
"""
