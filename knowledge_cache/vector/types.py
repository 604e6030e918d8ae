"""
Data model for the vector knowledge cache.

``VectorEntry`` is the unit of knowledge owned by exactly one scope store.
Records arriving from outside (repository rows, caller payloads) are validated
through the pydantic boundary models before they become entries.
"""

import hashlib
import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np
from pydantic import (
    BaseModel,
    ConfigDict,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
)

from ..core.errors import InvalidVectorError, VectorSearchError

# Fixed per-entry bookkeeping cost (dict slot, dataclass, numpy header)
ENTRY_OVERHEAD_BYTES = 256

ExtensionValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]


def compute_content_hash(content: str, embedding: np.ndarray) -> str:
    """SHA-256 over the UTF-8 content followed by the little-endian float32 embedding."""
    digest = hashlib.sha256()
    digest.update(content.encode("utf-8"))
    digest.update(np.asarray(embedding, dtype="<f4").tobytes())
    return digest.hexdigest()


def _text_bytes(value: Optional[str]) -> int:
    return len(value.encode("utf-8")) if value else 0


@dataclass(frozen=True)
class ScopeKey:
    """Owner of one isolated store: organization + chatbot configuration + content version."""

    organization_id: str
    configuration_id: str
    content_version: str = ""

    def __post_init__(self):
        if not self.organization_id or not self.configuration_id:
            raise ValueError("ScopeKey requires organization_id and configuration_id")

    def __str__(self) -> str:
        base = f"{self.organization_id}/{self.configuration_id}"
        return f"{base}@{self.content_version}" if self.content_version else base


@dataclass(eq=False)
class VectorEntry:
    """A single embedded knowledge item held by a scope store.

    Entries compare by identity; same_content() compares id and content hash.
    """

    id: str
    """Unique identifier within the scope"""

    embedding: np.ndarray
    """Read-only float32 vector; length is the scope dimensionality"""

    content: str = ""
    """Source text the embedding was produced from"""

    content_hash: str = ""
    """Digest of content + embedding; computed when empty"""

    category: Optional[str] = None
    source_type: Optional[str] = None
    title: Optional[str] = None

    priority: int = 0
    """Eviction priority for the priority strategy (lower evicts first)"""

    extensions: Dict[str, Any] = field(default_factory=dict)
    """Forward-compatible extension fields"""

    created_at: float = field(default_factory=time.time)
    last_accessed_at: Optional[float] = None
    access_count: int = 0
    size_bytes: int = field(init=False, default=0)

    def __post_init__(self):
        try:
            vector = np.array(self.embedding, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise InvalidVectorError(f"Embedding for '{self.id}' is not numeric", {"id": self.id}) from e
        if vector.ndim != 1:
            raise InvalidVectorError(
                f"Embedding for '{self.id}' must be one-dimensional, got shape {vector.shape}",
                {"id": self.id, "shape": list(vector.shape)},
            )
        vector.setflags(write=False)
        self.embedding = vector

        if not self.content_hash:
            self.content_hash = compute_content_hash(self.content, vector)
        if self.last_accessed_at is None:
            self.last_accessed_at = self.created_at
        self.size_bytes = self.estimate_size()

    @property
    def dimension(self) -> int:
        return int(self.embedding.shape[0])

    def estimate_size(self) -> int:
        """Estimated memory footprint in bytes."""
        metadata_bytes = sum(
            _text_bytes(v)
            for v in (self.id, self.content, self.title, self.category, self.source_type, self.content_hash)
        )
        metadata_bytes += sum(_text_bytes(k) + _text_bytes(str(v)) for k, v in self.extensions.items())
        return int(self.embedding.nbytes) + metadata_bytes + ENTRY_OVERHEAD_BYTES

    def touch(self, now: float) -> None:
        # last_accessed_at never moves backwards
        if now > self.last_accessed_at:
            self.last_accessed_at = now
        self.access_count += 1

    def same_content(self, other: "VectorEntry") -> bool:
        return self.id == other.id and self.content_hash == other.content_hash

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content_hash": self.content_hash,
            "category": self.category,
            "source_type": self.source_type,
            "title": self.title,
            "priority": self.priority,
            "extensions": dict(self.extensions),
            "dimension": self.dimension,
            "created_at": self.created_at,
            "last_accessed_at": self.last_accessed_at,
            "access_count": self.access_count,
            "size_bytes": self.size_bytes,
        }


@dataclass(eq=False)
class SearchResult:
    """Represents a ranked hit produced by one search."""

    entry: VectorEntry
    """The matching entry"""

    score: float
    """Cosine similarity in [-1, 1]"""

    @property
    def id(self) -> str:
        return self.entry.id


@dataclass
class SearchOutcome:
    """Explicit result of a caller-facing search: results or an error, never both."""

    results: List[SearchResult] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> List[SearchResult]:
        if self.error is not None:
            raise self.error
        return self.results


@dataclass
class CacheStats:
    """Derived per-scope statistics; recomputed on demand, never persisted."""

    scope: str
    state: str
    entry_count: int
    total_size_bytes: int
    memory_limit_kb: int
    dimension: Optional[int]
    hits: int = 0
    misses: int = 0
    hit_rate: float = 1.0
    searches_performed: int = 0
    evictions_performed: int = 0
    last_eviction_at: Optional[float] = None
    last_warmed_at: Optional[float] = None

    @property
    def memory_kb(self) -> float:
        return self.total_size_bytes / 1024

    @property
    def memory_utilization(self) -> float:
        """Percentage of the memory budget in use."""
        if self.memory_limit_kb <= 0:
            return 0.0
        return (self.memory_kb / self.memory_limit_kb) * 100

    def to_dict(self) -> Dict[str, Any]:
        def _iso(ts: Optional[float]) -> Optional[str]:
            return datetime.fromtimestamp(ts).isoformat() if ts is not None else None

        return {
            "scope": self.scope,
            "state": self.state,
            "entry_count": self.entry_count,
            "total_size_bytes": self.total_size_bytes,
            "memory_kb": round(self.memory_kb, 2),
            "memory_limit_kb": self.memory_limit_kb,
            "memory_utilization": round(self.memory_utilization, 2),
            "dimension": self.dimension,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "searches_performed": self.searches_performed,
            "evictions_performed": self.evictions_performed,
            "last_eviction_at": _iso(self.last_eviction_at),
            "last_warmed_at": _iso(self.last_warmed_at),
        }


class VectorEntryPayload(BaseModel):
    """Boundary model for records entering the cache from outside."""

    model_config = ConfigDict(extra="forbid")

    id: str
    embedding: List[float]
    content: str = ""
    content_hash: Optional[str] = None
    category: Optional[str] = None
    source_type: Optional[str] = None
    title: Optional[str] = None
    priority: int = 0
    extensions: Dict[str, ExtensionValue] = {}
    created_at: Optional[float] = None

    @field_validator('id')
    @classmethod
    def id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('id cannot be empty')
        return v

    @field_validator('embedding')
    @classmethod
    def embedding_must_be_finite(cls, v):
        if not v:
            raise ValueError('embedding cannot be empty')
        if not all(math.isfinite(x) for x in v):
            raise ValueError('embedding must contain only finite values')
        return v

    def to_entry(self) -> VectorEntry:
        kwargs = dict(
            id=self.id,
            embedding=np.asarray(self.embedding, dtype=np.float32),
            content=self.content,
            content_hash=self.content_hash or "",
            category=self.category,
            source_type=self.source_type,
            title=self.title,
            priority=self.priority,
            extensions=dict(self.extensions),
        )
        if self.created_at is not None:
            kwargs["created_at"] = self.created_at
        return VectorEntry(**kwargs)


def coerce_entry(record: Union[VectorEntry, Mapping[str, Any]]) -> VectorEntry:
    """Accept a ready VectorEntry or validate a mapping into one."""
    if isinstance(record, VectorEntry):
        return record
    if not isinstance(record, Mapping):
        raise InvalidVectorError(
            f"Unsupported record type: {type(record).__name__}",
            {"type": type(record).__name__},
        )
    try:
        return VectorEntryPayload.model_validate(dict(record)).to_entry()
    except ValidationError as e:
        raise InvalidVectorError(
            f"Invalid vector record '{record.get('id', '?')}'",
            {"errors": [err["msg"] for err in e.errors()]},
        ) from e


class SearchOptions(BaseModel):
    """Search parameters; ``None`` threshold/limit fall back to configured defaults."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    threshold: Optional[float] = None
    limit: Optional[int] = None
    category_filter: Optional[str] = None
    source_type_filter: Optional[str] = None

    @field_validator('threshold')
    @classmethod
    def threshold_in_range(cls, v):
        if v is not None and not (math.isfinite(v) and -1.0 <= v <= 1.0):
            raise ValueError('threshold must be within [-1, 1]')
        return v

    @field_validator('limit')
    @classmethod
    def limit_not_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError('limit must be >= 0')
        return v

    @field_validator('category_filter', 'source_type_filter')
    @classmethod
    def filter_not_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError('filters must be non-empty strings')
        return v


def coerce_search_options(options: Union[SearchOptions, Mapping[str, Any], None]) -> SearchOptions:
    """Normalize caller options, translating validation failures into VectorSearchError."""
    if options is None:
        return SearchOptions()
    if isinstance(options, SearchOptions):
        return options
    if not isinstance(options, Mapping):
        raise VectorSearchError(
            "Search options must be a mapping or SearchOptions",
            {"type": type(options).__name__},
        )
    try:
        return SearchOptions.model_validate(dict(options))
    except ValidationError as e:
        raise VectorSearchError(
            "Malformed search options",
            {"errors": [err["msg"] for err in e.errors()]},
        ) from e
