from .index import CapabilityIndex
from .models import CapabilityMatch, CapabilityRecord, ResourceSchema, SearchFilters, capability_id
from .ranking import hybrid_rank, semantic_rank
from .scanner import CapabilityScanner, ScanSummary
from .vector_store import InMemoryVectorStore, VectorStore

__all__ = [
    'CapabilityIndex', 'CapabilityMatch', 'CapabilityRecord', 'ResourceSchema', 'SearchFilters', 'capability_id',
    'hybrid_rank', 'semantic_rank',
    'CapabilityScanner', 'ScanSummary',
    'InMemoryVectorStore', 'VectorStore',
]
