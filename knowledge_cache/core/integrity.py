"""
Integrity checking for scope stores.

``validate_entry`` guards every insert. ``scan`` audits a whole store and
returns an advisory report; it never mutates the store. Remediation is the
lifecycle controller's job.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from .errors import CacheIntegrityError, DimensionMismatch, InvalidVectorError
from ..util.logging import logger
from ..vector.types import VectorEntry, compute_content_hash


class FindingType(str, Enum):
    DIMENSION_MISMATCH = "dimension_mismatch"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    NON_FINITE_VALUES = "non_finite_values"
    ID_MISMATCH = "id_mismatch"
    SIZE_ACCOUNTING = "size_accounting"


# Findings fixable by dropping and refetching the affected entries
RECOVERABLE_FINDINGS = frozenset({
    FindingType.DIMENSION_MISMATCH,
    FindingType.CHECKSUM_MISMATCH,
    FindingType.NON_FINITE_VALUES,
})


@dataclass
class IntegrityFinding:
    """Represents one detected corruption in a store."""
    finding_type: FindingType
    record_id: Optional[str]  # None for store-level findings
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def recoverable(self) -> bool:
        return self.finding_type in RECOVERABLE_FINDINGS

    @property
    def severity(self) -> str:
        return "warning" if self.recoverable else "critical"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.finding_type.value,
            "severity": self.severity,
            "record_id": self.record_id,
            "details": self.details,
        }


@dataclass
class IntegrityReport:
    """Result of one integrity scan."""
    scope: str
    started_at: datetime
    total_entries: int = 0
    completed_at: Optional[datetime] = None
    findings: List[IntegrityFinding] = field(default_factory=list)
    rebuild_threshold: float = 0.25

    @property
    def affected_ids(self) -> List[str]:
        return sorted({f.record_id for f in self.findings if f.record_id is not None})

    @property
    def corruption_rate(self) -> float:
        if self.total_entries == 0:
            return 0.0
        return len(self.affected_ids) / self.total_entries

    @property
    def recoverable(self) -> List[IntegrityFinding]:
        return [f for f in self.findings if f.recoverable]

    @property
    def unrecoverable(self) -> List[IntegrityFinding]:
        return [f for f in self.findings if not f.recoverable]

    @property
    def is_clean(self) -> bool:
        return not self.findings

    @property
    def requires_rebuild(self) -> bool:
        return bool(self.unrecoverable) or self.corruption_rate > self.rebuild_threshold

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "operation": "integrity_scan",
            "scope": self.scope,
            "started_at": self.started_at.isoformat(),
            "total_entries": self.total_entries,
            "issues_found": len(self.findings),
            "affected_ids": self.affected_ids,
            "corruption_rate": round(self.corruption_rate, 4),
            "requires_rebuild": self.requires_rebuild,
            "findings": [f.to_dict() for f in self.findings],
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


def verify_checksum(entry: VectorEntry) -> bool:
    """Recompute the content hash and compare it with the stored one."""
    return compute_content_hash(entry.content, entry.embedding) == entry.content_hash


def _all_finite(embedding) -> bool:
    return bool(np.all(np.isfinite(np.asarray(embedding, dtype=np.float64))))


class IntegrityChecker:
    """Validates entries on insert and audits stores on demand."""

    def __init__(self, verify_checksums: bool = True, rebuild_threshold: float = 0.25):
        self.verify_checksums = verify_checksums
        self.rebuild_threshold = rebuild_threshold

    def validate_entry(self, entry: VectorEntry, dimension: Optional[int]) -> None:
        """
        Check a single entry before it is written.

        Raises:
            InvalidVectorError: empty embedding or NaN/inf values
            DimensionMismatch: length differs from the established dimensionality
            CacheIntegrityError: stored content_hash does not match (when enabled)
        """
        if entry.dimension == 0:
            raise InvalidVectorError(f"Embedding for '{entry.id}' is empty", {"id": entry.id})

        if not _all_finite(entry.embedding):
            raise InvalidVectorError(
                f"Embedding for '{entry.id}' contains non-finite values", {"id": entry.id}
            )

        if dimension is not None and entry.dimension != dimension:
            raise DimensionMismatch(dimension, entry.dimension, "insert", {"id": entry.id})

        if self.verify_checksums and not verify_checksum(entry):
            raise CacheIntegrityError(
                f"Checksum mismatch for '{entry.id}'",
                {"id": entry.id, "content_hash": entry.content_hash},
            )

    def scan(self, store, scope: str = "") -> IntegrityReport:
        """
        Audit every entry of a store from a snapshot taken under its read lock.

        Returns:
            IntegrityReport: findings and corruption rate; the store is untouched
        """
        report = IntegrityReport(
            scope=scope,
            started_at=datetime.now(),
            rebuild_threshold=self.rebuild_threshold,
        )
        scan_start = time.time()

        with store.read_locked():
            items = store.items()
            dimension = store.dimension
            recorded_total = store.total_size_bytes

        report.total_entries = len(items)
        size_sum = 0

        for key, entry in items:
            size_sum += entry.size_bytes

            if key != entry.id:
                report.findings.append(IntegrityFinding(
                    FindingType.ID_MISMATCH, key, {"entry_id": entry.id}
                ))

            length = int(np.asarray(entry.embedding).shape[0]) if np.ndim(entry.embedding) == 1 else -1
            if dimension is not None and length != dimension:
                report.findings.append(IntegrityFinding(
                    FindingType.DIMENSION_MISMATCH, key, {"expected": dimension, "actual": length}
                ))
                # Length is wrong; hash and finiteness checks add nothing
                continue

            if not _all_finite(entry.embedding):
                report.findings.append(IntegrityFinding(FindingType.NON_FINITE_VALUES, key))
                continue

            if self.verify_checksums and not verify_checksum(entry):
                report.findings.append(IntegrityFinding(FindingType.CHECKSUM_MISMATCH, key))

        if size_sum != recorded_total:
            report.findings.append(IntegrityFinding(
                FindingType.SIZE_ACCOUNTING, None,
                {"recorded_bytes": recorded_total, "actual_bytes": size_sum},
            ))

        report.completed_at = datetime.now()

        for finding in report.findings:
            logger.log_integrity_finding(
                finding.finding_type.value, finding.severity, finding.record_id, finding.details
            )
        logger.log_operation("integrity.scan", "clean" if report.is_clean else "corrupted", {
            "scope": scope,
            "total_entries": report.total_entries,
            "findings": len(report.findings),
            "corruption_rate": round(report.corruption_rate, 4),
            "duration_ms": round((time.time() - scan_start) * 1000, 2),
        })
        return report
