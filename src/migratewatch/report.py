"""Connection analysis reports computed from snapshot sequences."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Mapping

from .models import ConnectionUsageSnapshot

HIGH_GROWTH_THRESHOLD = 3
LEAK_STEP_THRESHOLD = 5


def _sorted_counts(counts: Mapping[str, int]) -> list[tuple[str, int]]:
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


def format_snapshot(snapshot: ConnectionUsageSnapshot) -> str:
    """Render a single snapshot as a human-readable block."""

    lines = [
        f"Migration Connection Snapshot [@{snapshot.captured_at.isoformat()}]",
        f"Phase: {snapshot.phase.value}",
        f"Context: {snapshot.migration_context}",
        f"Total Connections: {snapshot.total_connections}",
        f"Active: {snapshot.active_connections}, Idle: {snapshot.idle_connections}",
    ]
    if snapshot.connections_by_state:
        lines.append("By State:")
        for state, count in _sorted_counts(snapshot.connections_by_state):
            lines.append(f"  {state}: {count}")
    if snapshot.connections_by_application:
        lines.append("By Application:")
        for app, count in _sorted_counts(snapshot.connections_by_application):
            lines.append(f"  {app or 'unknown'}: {count}")
    return "\n".join(lines)


def growth_verdict(growth: int) -> str:
    if growth > HIGH_GROWTH_THRESHOLD:
        return "HIGH CONNECTION GROWTH DETECTED"
    if growth > 0:
        return "Connection growth detected"
    if growth < 0:
        return "Connection count decreased (good cleanup)"
    return "No net connection growth"


def find_potential_leaks(snapshots: list[ConnectionUsageSnapshot]) -> list[str]:
    leaks = []
    for previous, current in zip(snapshots, snapshots[1:]):
        increase = current.total_connections - previous.total_connections
        if increase > LEAK_STEP_THRESHOLD:
            leaks.append(
                f"Phase {previous.phase.value} -> {current.phase.value}: +{increase} connections"
            )
    return leaks


@dataclass(slots=True)
class ConnectionAnalysisReport:
    """Aggregate view over a chronologically ordered snapshot sequence."""

    snapshots: list[ConnectionUsageSnapshot]
    started_at: datetime | None
    ended_at: datetime | None
    max_connections: int
    min_connections: int
    avg_connections: float
    connection_growth: int
    potential_leaks: list[str] = field(default_factory=list)

    @property
    def verdict(self) -> str:
        return growth_verdict(self.connection_growth)

    @property
    def analysis_report(self) -> str:
        start = self.started_at.isoformat() if self.started_at else "n/a"
        end = self.ended_at.isoformat() if self.ended_at else "n/a"
        sign = "+" if self.connection_growth >= 0 else ""
        lines = [
            "Migration Connection Analysis Report",
            f"Duration: {start} -> {end}",
            f"Connection Range: {self.min_connections} - {self.max_connections}"
            f" (avg: {self.avg_connections:.1f})",
            f"Net Growth: {sign}{self.connection_growth} connections",
            f"Snapshots: {len(self.snapshots)}",
        ]
        if self.potential_leaks:
            lines.append("")
            lines.append("Potential Connection Leaks:")
            lines.extend(f"  - {leak}" for leak in self.potential_leaks)
        lines.append("")
        lines.append(self.verdict)
        for snapshot in self.snapshots:
            lines.append("")
            lines.append(format_snapshot(snapshot))
        return "\n".join(lines)


def build_report(snapshots: Iterable[ConnectionUsageSnapshot]) -> ConnectionAnalysisReport:
    """Compute connection statistics without touching the source collection."""

    ordered = sorted(snapshots, key=lambda snapshot: snapshot.captured_at)
    totals = [snapshot.total_connections for snapshot in ordered]
    if not ordered:
        return ConnectionAnalysisReport(
            snapshots=[],
            started_at=None,
            ended_at=None,
            max_connections=0,
            min_connections=0,
            avg_connections=0.0,
            connection_growth=0,
        )
    return ConnectionAnalysisReport(
        snapshots=ordered,
        started_at=ordered[0].captured_at,
        ended_at=ordered[-1].captured_at,
        max_connections=max(totals),
        min_connections=min(totals),
        avg_connections=sum(totals) / len(totals),
        connection_growth=totals[-1] - totals[0],
        potential_leaks=find_potential_leaks(ordered),
    )


__all__ = [
    "ConnectionAnalysisReport",
    "HIGH_GROWTH_THRESHOLD",
    "LEAK_STEP_THRESHOLD",
    "build_report",
    "format_snapshot",
    "growth_verdict",
]
