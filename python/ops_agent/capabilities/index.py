"""
Capability Index: semantic catalogue of the cluster's resource types.

Records are keyed by capability_id(resource_name), so re-indexing a resource
supersedes the previous record instead of adding a second one. Calls to the
model service and the vector store go through with_retry; schema problems
are reported immediately.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from pydantic import ValidationError

from .. import config
from ..backoff import BackoffConfig, with_retry
from ..errors import InvalidInputError, InvalidResourceSchemaError
from ..llm import ModelService
from .models import CapabilityMatch, CapabilityRecord, ResourceSchema, SearchFilters, capability_id
from .ranking import RankingFunction, hybrid_rank
from .vector_store import StoredPoint, VectorStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def kind_matches_resource(kind: str, resource_name: str) -> bool:
    """Does a Kind name the (possibly group-qualified, plural) resource?

    Deployment -> deployments.apps, Ingress -> ingresses, Policy -> policies.example.io
    """
    kind = kind.lower()
    name = resource_name.lower()
    plural = name.split('.', 1)[0]
    candidates = {kind, kind + 's', kind + 'es'}
    if kind.endswith('y'):
        candidates.add(kind[:-1] + 'ies')
    return name in candidates or plural in candidates


class CapabilityIndex:
    def __init__(
        self,
        model: ModelService,
        store: VectorStore,
        ranker: RankingFunction = hybrid_rank,
        retry_count: int = config.RETRY_COUNT,
        backoff: Optional[BackoffConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.model = model
        self.store = store
        self.ranker = ranker
        self.retry_count = retry_count
        self.backoff = backoff or BackoffConfig()
        self._sleep = sleep

    async def _retry(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        return await with_retry(
            operation,
            retry_count=self.retry_count,
            backoff=self.backoff,
            label=label,
            sleep=self._sleep,
        )

    @staticmethod
    def _coerce_schema(schema: Union[ResourceSchema, Dict[str, Any]]) -> ResourceSchema:
        if isinstance(schema, ResourceSchema):
            return schema
        try:
            return ResourceSchema.model_validate(schema)
        except ValidationError as e:
            name = schema.get("resource_name") if isinstance(schema, dict) else None
            raise InvalidResourceSchemaError(
                f"Malformed resource schema{f' for {name}' if name else ''}: {e.error_count()} error(s)",
                detail={"errors": e.errors(include_url=False)},
            ) from e

    async def index(self, schema: Union[ResourceSchema, Dict[str, Any]]) -> CapabilityRecord:
        """Embed and upsert one resource's capabilities."""
        schema = self._coerce_schema(schema)
        record = CapabilityRecord.from_schema(schema)

        vector = await self._retry(lambda: self.model.embed(record.search_text()), f"embed {record.resource_name}")
        record = record.model_copy(update={"embedding": list(vector)})
        await self._retry(
            lambda: self.store.upsert(record.id, record.embedding, record.payload()),
            f"upsert {record.resource_name}",
        )
        logger.info(f"[capabilities] Indexed {record.resource_name} ({record.id})")
        return record

    async def search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = config.CAPABILITY_SEARCH_LIMIT,
    ) -> List[CapabilityMatch]:
        """Ranked matches for a natural-language query, best first."""
        if not query or not query.strip():
            raise InvalidInputError("Capability search query must not be empty")
        if limit < 1:
            raise InvalidInputError("Capability search limit must be >= 1")
        filters = filters or SearchFilters()

        vector = await self._retry(lambda: self.model.embed(query), "embed search query")
        # Over-fetch so keyword signals can promote candidates past weak semantic ones
        hits = await self._retry(
            lambda: self.store.search(vector, limit * 2, filters.to_store_filters()),
            "vector search",
        )
        candidates = [(self._to_record(hit.point), hit.score) for hit in hits]
        matches = self.ranker(query, candidates)[:limit]
        logger.debug(f"[capabilities] '{query[:60]}' -> {[m.record.resource_name for m in matches]}")
        return matches

    @staticmethod
    def _to_record(point: StoredPoint) -> CapabilityRecord:
        return CapabilityRecord.from_stored(point.id, point.vector, point.payload)

    async def get(self, record_id: str) -> Optional[CapabilityRecord]:
        point = await self._retry(lambda: self.store.get(record_id), f"get {record_id}")
        return self._to_record(point) if point else None

    async def get_by_name(self, resource_name: str) -> Optional[CapabilityRecord]:
        return await self.get(capability_id(resource_name))

    async def find_by_kind(self, kind: str, api_version: str) -> Optional[CapabilityRecord]:
        """Record for a manifest's kind/apiVersion pair, if indexed."""
        for record in await self.list():
            if record.api_version == api_version and kind_matches_resource(kind, record.resource_name):
                return record
        return None

    async def list(self, limit: Optional[int] = None) -> List[CapabilityRecord]:
        points = await self._retry(self.store.scroll, "list capabilities")
        records = sorted((self._to_record(p) for p in points), key=lambda r: r.resource_name)
        return records[:limit] if limit is not None else records

    async def delete(self, record_id: str) -> bool:
        deleted = await self._retry(lambda: self.store.delete(record_id), f"delete {record_id}")
        if deleted:
            logger.info(f"[capabilities] Deleted {record_id}")
        return deleted

    async def delete_by_name(self, resource_name: str) -> bool:
        return await self.delete(capability_id(resource_name))

    async def delete_all(self):
        await self._retry(self.store.delete_all, "delete all capabilities")
        logger.info("[capabilities] Deleted all capabilities")

    async def count(self) -> int:
        return len(await self.list())
