import hashlib
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .. import config
from ..state import utcnow

Complexity = Literal['low', 'medium', 'high']


def capability_id(resource_name: str) -> str:
    """Deterministic UUID-shaped ID for a qualified resource name (e.g. deployments.apps)."""
    digest = hashlib.sha256(f"capability-{resource_name}".encode()).hexdigest()
    return f"{digest[:8]}-{digest[8:12]}-{digest[12:16]}-{digest[16:20]}-{digest[20:32]}"


def qualified_name(plural: str, group: str = "") -> str:
    return f"{plural}.{group}" if group else plural


class ResourceSchema(BaseModel):
    """One cluster resource type plus its inferred capabilities, ready to index."""
    resource_name: str
    kind: str
    group: str = ""
    api_version: str
    namespaced: bool = True
    verbs: List[str] = []
    capabilities: List[str] = []
    providers: List[str] = []
    abstractions: List[str] = []
    complexity: Complexity = 'medium'
    description: str
    use_case: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)

    @field_validator('resource_name', 'kind', 'api_version', 'description')
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class CapabilityRecord(BaseModel):
    id: str
    resource_name: str
    kind: str
    group: str = ""
    api_version: str
    namespaced: bool = True
    verbs: List[str] = []
    capabilities: List[str] = []
    providers: List[str] = []
    abstractions: List[str] = []
    complexity: Complexity = 'medium'
    description: str = ""
    use_case: str = ""
    confidence: float = 0.0
    analyzed_at: datetime = Field(default_factory=utcnow)
    embedding: List[float] = []

    @classmethod
    def from_schema(cls, schema: ResourceSchema) -> "CapabilityRecord":
        return cls(id=capability_id(schema.resource_name), **schema.model_dump())

    @classmethod
    def from_stored(cls, point_id: str, vector: List[float], payload: Dict[str, Any]) -> "CapabilityRecord":
        return cls.model_validate({**payload, "id": point_id, "embedding": list(vector)})

    def search_text(self) -> str:
        """Text that gets embedded, and matched against query keywords."""
        return " ".join([
            self.resource_name,
            self.kind,
            *self.capabilities,
            *self.providers,
            *self.abstractions,
            self.description,
            self.use_case,
            self.complexity,
        ])

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id", "embedding"})

    @property
    def is_operator_backed(self) -> bool:
        return self.group not in config.CORE_API_GROUPS


class CapabilityMatch(BaseModel):
    record: CapabilityRecord
    score: float
    semantic_score: float = 0.0
    keyword_score: float = 0.0

    def summary(self) -> Dict[str, Any]:
        """Compact form handed to the model (no embedding)."""
        r = self.record
        return {
            "resource": r.resource_name,
            "kind": r.kind,
            "apiVersion": r.api_version,
            "operator_backed": r.is_operator_backed,
            "capabilities": r.capabilities,
            "providers": r.providers,
            "complexity": r.complexity,
            "description": r.description,
            "use_case": r.use_case,
            "score": round(self.score, 3),
        }


class SearchFilters(BaseModel):
    group: Optional[str] = None
    verb: Optional[str] = None
    complexity: Optional[Complexity] = None
    provider: Optional[str] = None

    def to_store_filters(self) -> Dict[str, str]:
        """Payload field -> required value, in vector-store terms."""
        mapping = {"group": self.group, "verbs": self.verb, "complexity": self.complexity, "providers": self.provider}
        return {key: value for key, value in mapping.items() if value is not None}
