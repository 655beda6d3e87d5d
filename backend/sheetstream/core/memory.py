"""
Memory Monitor — on-demand process memory snapshots.

Used by the export pipeline at fixed row-count checkpoints and by the
/memory/status diagnostic endpoint. Every call reads fresh values from the
OS; nothing is sampled in the background and no history is kept.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import psutil

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class MemorySnapshot:
    """Point-in-time memory reading. Not retained."""

    used_mb: float
    max_mb: float
    usage_percent: float
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "used_mb": round(self.used_mb, 2),
            "max_mb": round(self.max_mb, 2),
            "usage_percent": round(self.usage_percent, 2),
            "timestamp": self.timestamp.isoformat(),
        }


class MemoryMonitor:
    """
    Reports process memory usage against a ceiling.

    used = resident set size of this process.
    max  = ``limit_mb`` when configured (container budget), otherwise total
           physical memory of the host.
    """

    def __init__(self, limit_mb: Optional[float] = None):
        if limit_mb is not None and limit_mb <= 0:
            raise ValueError(f"limit_mb must be positive, got {limit_mb}")
        self.limit_mb = limit_mb
        self.process = psutil.Process()

    def current_usage_mb(self) -> float:
        """Resident memory of this process in MB."""
        return self.process.memory_info().rss / BYTES_PER_MB

    def max_memory_mb(self) -> float:
        """Memory ceiling in MB."""
        if self.limit_mb is not None:
            return float(self.limit_mb)
        return psutil.virtual_memory().total / BYTES_PER_MB

    def usage_percent(self) -> float:
        return self.snapshot().usage_percent

    def snapshot(self) -> MemorySnapshot:
        max_mb = self.max_memory_mb()
        # Clamp: a configured limit below current RSS saturates at 100%
        used_mb = min(max(self.current_usage_mb(), 0.0), max_mb)
        return MemorySnapshot(
            used_mb=used_mb,
            max_mb=max_mb,
            usage_percent=used_mb / max_mb * 100,
        )

    def log_memory_status(self, context: str) -> MemorySnapshot:
        snap = self.snapshot()
        logger.info(
            f"Memory status [{context}] - used: {snap.used_mb:.1f}MB, "
            f"max: {snap.max_mb:.1f}MB, usage: {snap.usage_percent:.2f}%",
            extra={"extra_fields": snap.to_dict()},
        )
        return snap
