"""
Knowledge cache configuration.
Values come from KNOWLEDGE_CACHE_* environment variables with typed defaults.
"""

import os
from dataclasses import dataclass, fields
from typing import List

VALID_EVICTION_STRATEGIES = ("lru", "lfu", "random", "priority")

# Memory budget per scope (50MB default)
MAX_MEMORY_KB = int(os.getenv("KNOWLEDGE_CACHE_MAX_MEMORY_KB", str(50 * 1024)))
MAX_ENTRIES = int(os.getenv("KNOWLEDGE_CACHE_MAX_ENTRIES", "10000"))
EVICTION_STRATEGY = os.getenv("KNOWLEDGE_CACHE_EVICTION_STRATEGY", "lru")  # lru|lfu|random|priority
EVICTION_BATCH_SIZE = int(os.getenv("KNOWLEDGE_CACHE_EVICTION_BATCH_SIZE", "100"))
HEADROOM_FACTOR = float(os.getenv("KNOWLEDGE_CACHE_HEADROOM_FACTOR", "0.9"))

# Search defaults
DEFAULT_THRESHOLD = float(os.getenv("KNOWLEDGE_CACHE_DEFAULT_THRESHOLD", "0.15"))
DEFAULT_LIMIT = int(os.getenv("KNOWLEDGE_CACHE_DEFAULT_LIMIT", "5"))

# Integrity checking
INTEGRITY_CHECK_ENABLED = os.getenv("KNOWLEDGE_CACHE_INTEGRITY_CHECK_ENABLED", "true").lower() == "true"
CORRUPTION_REBUILD_THRESHOLD = float(os.getenv("KNOWLEDGE_CACHE_CORRUPTION_REBUILD_THRESHOLD", "0.25"))

# Warm-up
WARM_BATCH_SIZE = int(os.getenv("KNOWLEDGE_CACHE_WARM_BATCH_SIZE", "500"))
WARM_TIMEOUT_SEC = float(os.getenv("KNOWLEDGE_CACHE_WARM_TIMEOUT_SEC", "30"))

# Scope registry reclamation
MAX_SCOPES = int(os.getenv("KNOWLEDGE_CACHE_MAX_SCOPES", "20"))
SCOPE_TTL_SEC = float(os.getenv("KNOWLEDGE_CACHE_SCOPE_TTL_SEC", str(30 * 60)))

# Statistics and maintenance
HIT_RATE_WINDOW = int(os.getenv("KNOWLEDGE_CACHE_HIT_RATE_WINDOW", "1000"))
MAINTENANCE_INTERVAL_SEC = int(os.getenv("KNOWLEDGE_CACHE_MAINTENANCE_INTERVAL_SEC", "300"))


@dataclass
class CacheConfig:
    """Per-scope cache settings. Defaults mirror the module constants."""
    max_memory_kb: int = MAX_MEMORY_KB
    max_entries: int = MAX_ENTRIES
    eviction_strategy: str = EVICTION_STRATEGY
    eviction_batch_size: int = EVICTION_BATCH_SIZE
    headroom_factor: float = HEADROOM_FACTOR
    default_threshold: float = DEFAULT_THRESHOLD
    default_limit: int = DEFAULT_LIMIT
    integrity_check_enabled: bool = INTEGRITY_CHECK_ENABLED
    corruption_rebuild_threshold: float = CORRUPTION_REBUILD_THRESHOLD
    warm_batch_size: int = WARM_BATCH_SIZE
    warm_timeout_sec: float = WARM_TIMEOUT_SEC
    max_scopes: int = MAX_SCOPES
    scope_ttl_sec: float = SCOPE_TTL_SEC
    hit_rate_window: int = HIT_RATE_WINDOW
    maintenance_interval_sec: int = MAINTENANCE_INTERVAL_SEC

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Build a config by re-reading the environment (not the import-time constants)."""
        values = {}
        for f in fields(cls):
            raw = os.getenv(f"KNOWLEDGE_CACHE_{f.name.upper()}")
            if raw is None:
                continue
            if f.type in (bool, "bool"):
                values[f.name] = raw.lower() == "true"
            elif f.type in (int, "int"):
                values[f.name] = int(raw)
            elif f.type in (float, "float"):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw
        return cls(**values)

    @property
    def max_memory_bytes(self) -> int:
        return self.max_memory_kb * 1024

    def issues(self) -> List[str]:
        """Return a list of configuration problems (empty when valid)."""
        issues = []

        if self.max_memory_kb < 1:
            issues.append("max_memory_kb must be >= 1")

        if self.max_entries < 1:
            issues.append("max_entries must be >= 1")

        if self.eviction_strategy not in VALID_EVICTION_STRATEGIES:
            issues.append(f"Invalid eviction_strategy: {self.eviction_strategy}")

        if self.eviction_batch_size < 1:
            issues.append("eviction_batch_size must be >= 1")

        if not 0.0 < self.headroom_factor <= 1.0:
            issues.append("headroom_factor must be in (0, 1]")

        if not -1.0 <= self.default_threshold <= 1.0:
            issues.append("default_threshold must be in [-1, 1]")

        if self.default_limit < 0:
            issues.append("default_limit must be >= 0")

        if not 0.0 <= self.corruption_rebuild_threshold <= 1.0:
            issues.append("corruption_rebuild_threshold must be in [0, 1]")

        if self.warm_batch_size < 1:
            issues.append("warm_batch_size must be >= 1")

        if self.warm_timeout_sec <= 0:
            issues.append("warm_timeout_sec must be > 0")

        if self.max_scopes < 1:
            issues.append("max_scopes must be >= 1")

        if self.scope_ttl_sec <= 0:
            issues.append("scope_ttl_sec must be > 0")

        if self.hit_rate_window < 1:
            issues.append("hit_rate_window must be >= 1")

        if self.maintenance_interval_sec < 1:
            issues.append("maintenance_interval_sec must be >= 1")

        return issues

    def validate(self) -> "CacheConfig":
        """Raise ValueError if the configuration is invalid; return self otherwise."""
        issues = self.issues()
        if issues:
            raise ValueError(f"Knowledge cache configuration invalid: {issues}")
        return self


def validate_cache_config():
    """Validate environment-derived configuration and return any issues."""
    return CacheConfig.from_env().issues()
