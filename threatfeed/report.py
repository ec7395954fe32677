from typing import List, Sequence

from .schemas import Distribution, OutcomeStatus, Snapshot


def _table(title: str, rows: Sequence[Distribution]) -> List[str]:
    if not rows:
        return []
    lines = [f"### {title}", "", "| Name | Count |", "| --- | ---: |"]
    lines.extend(f"| {d.name} | {d.count} |" for d in rows)
    lines.append("")
    return lines


def to_markdown(snapshot: Snapshot, recent: int = 25) -> str:
    lines: List[str] = []
    lines.append(f"# Threat Feed Snapshot\n\nGenerated: {snapshot.generated_at.isoformat()} (v{snapshot.version})\n")
    lines.append(f"Total indicators: {snapshot.total}\n")

    if snapshot.sources:
        lines.append("## Sources\n")
        for o in snapshot.sources:
            detail = f"{o.count} indicators" if o.status == OutcomeStatus.SUCCESS else (o.message or "n/a")
            lines.append(f"- **{o.source}** → {o.status.value}, {detail} ({o.elapsed_ms:.0f}ms, {o.attempts} attempt(s))")
        lines.append("")

    lines.append("## Distribution\n")
    lines.extend(_table("By type", snapshot.by_type))
    lines.extend(_table("By severity", snapshot.by_severity))
    lines.extend(_table("By source", snapshot.by_source))
    lines.extend(_table("Top families", snapshot.by_family))

    if snapshot.recent:
        lines.append(f"## Most recent ({min(recent, len(snapshot.recent))} of {len(snapshot.recent)})\n")
        for ind in snapshot.recent[:recent]:
            family = f", {ind.family}" if ind.family else ""
            lines.append(f"- `{ind.key}` {ind.severity.value} / {ind.confidence}{family} via {', '.join(sorted(ind.sources))}")
        lines.append("")

    if snapshot.errors:
        lines.append("## Errors\n")
        for e in snapshot.errors:
            lines.append(f"- {e.source}: {e.kind}: {e.message}")
        lines.append("")
    return "\n".join(lines)
