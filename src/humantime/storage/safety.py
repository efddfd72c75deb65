"""Free disk space checks performed before store writes."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, NamedTuple

from ..errors import ErrorCode, SystemLevelError

logger = logging.getLogger(__name__)


class DiskUsage(NamedTuple):
    total: int
    used: int
    free: int


DiskUsageFn = Callable[[str], DiskUsage]


@dataclass(slots=True)
class SpaceReport:
    """Outcome of a disk space measurement."""

    path: Path
    free: int | None
    minimum: int
    warning: int

    @property
    def measured(self) -> bool:
        return self.free is not None

    @property
    def ok(self) -> bool:
        return self.free is None or self.free >= self.minimum

    @property
    def low(self) -> bool:
        return self.free is not None and self.free < self.warning

    def as_dict(self) -> dict[str, object]:
        return {
            "path": str(self.path),
            "free_bytes": self.free,
            "min_free_bytes": self.minimum,
            "warning_bytes": self.warning,
            "ok": self.ok,
            "low": self.low,
        }


def _existing_ancestor(path: Path) -> Path:
    candidate = Path(path)
    while not candidate.exists() and candidate != candidate.parent:
        candidate = candidate.parent
    return candidate


class DiskSpaceGuard:
    """Refuse writes below ``minimum`` free bytes and warn below ``warning``."""

    def __init__(
        self,
        path: Path,
        *,
        minimum: int,
        warning: int,
        disk_usage: DiskUsageFn | None = None,
    ) -> None:
        self._path = Path(path)
        self._minimum = minimum
        self._warning = max(warning, minimum)
        self._disk_usage = disk_usage or shutil.disk_usage

    def measure(self) -> SpaceReport:
        target = _existing_ancestor(self._path)
        try:
            usage = self._disk_usage(str(target))
        except OSError as exc:
            logger.debug("Unable to measure free space", extra={"path": str(target), "error": str(exc)})
            free = None
        else:
            free = int(usage.free)
        return SpaceReport(path=target, free=free, minimum=self._minimum, warning=self._warning)

    def check(self, op: str = "write") -> SpaceReport:
        """Raise ``SystemLevelError(DISK_FULL)`` when free space is below the minimum."""

        report = self.measure()
        if not report.ok:
            raise SystemLevelError(
                f"insufficient disk space: {report.free} bytes free, {self._minimum} required",
                code=ErrorCode.DISK_FULL,
                op=op,
            )
        if report.low:
            logger.warning(
                "Low disk space in data directory",
                extra={"path": str(report.path), "free_bytes": report.free, "op": op},
            )
        return report


__all__ = ["DiskSpaceGuard", "DiskUsage", "DiskUsageFn", "SpaceReport"]
