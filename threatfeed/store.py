"""
Dedup/merge store.

Holds the authoritative indicator index for the running process, keyed by
identity key, plus a bounded most-recently-seen list. Every merge republishes
a complete Snapshot whose distribution tables are recomputed from the index,
never accumulated across merges.
"""

import logging
from collections import Counter, OrderedDict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .schemas import (
    AggregationRun,
    Distribution,
    Indicator,
    Severity,
    Snapshot,
    TrendPoint,
)

logger = logging.getLogger(__name__)

TREND_LENGTH = 50
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def merge_indicator(stored: Indicator, incoming: Indicator) -> Indicator:
    """
    Fold a duplicate into the stored record.

    Seen-window and tag/source sets always widen. Severity, confidence and the
    source of record move to the incoming record only when its confidence is
    at least the stored one, so a weaker duplicate never downgrades a stronger
    detection.
    """
    update = {
        "first_seen": min(stored.first_seen, incoming.first_seen),
        "last_seen": max(stored.last_seen, incoming.last_seen),
        "tags": stored.tags | incoming.tags,
        "sources": stored.sources | incoming.sources,
    }
    if incoming.confidence >= stored.confidence:
        update.update(
            severity=incoming.severity,
            confidence=incoming.confidence,
            source=incoming.source,
            family=incoming.family or stored.family,
            threat_type=incoming.threat_type or stored.threat_type,
            metadata={**stored.metadata, **incoming.metadata},
        )
    else:
        update.update(
            family=stored.family or incoming.family,
            threat_type=stored.threat_type or incoming.threat_type,
            metadata={**incoming.metadata, **stored.metadata},
        )
    return stored.model_copy(update=update)


def distribution(indicators: Iterable[Indicator], key_fn, top_k: int) -> tuple:
    counts: Counter = Counter()
    newest: Dict[str, datetime] = {}
    for ind in indicators:
        for name in key_fn(ind):
            counts[name] += 1
            if ind.first_seen > newest.get(name, _EPOCH):
                newest[name] = ind.first_seen
    ranked = sorted(counts, key=lambda n: (-counts[n], -newest[n].timestamp(), n))
    return tuple(Distribution(name=n, count=counts[n]) for n in ranked[:top_k])


class IndicatorStore:
    """
    Keyed indicator index plus a bounded recent list.

    ``snapshot.recent`` is newest first across merges. Within one merge the
    batch is ordered by each incoming record's ``last_seen``, so the order in
    which sources finished does not matter.
    """

    def __init__(self, recent_capacity: int = 1000, top_k: int = 20):
        self.recent_capacity = recent_capacity
        self.top_k = top_k
        self._index: Dict[str, Indicator] = {}
        # key -> None, most recently seen last
        self._recent: "OrderedDict[str, None]" = OrderedDict()
        self._trend: List[TrendPoint] = []
        self._version = 0
        self._snapshot = Snapshot(generated_at=datetime.now(timezone.utc))

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def __len__(self) -> int:
        return len(self._index)

    def get(self, key: str) -> Optional[Indicator]:
        return self._index.get(key)

    def merge(self, indicators: Iterable[Indicator], run: Optional[AggregationRun] = None) -> Snapshot:
        inserted = updated = 0
        seen = []
        for ind in indicators:
            stored = self._index.get(ind.key)
            if stored is None:
                self._index[ind.key] = ind
                inserted += 1
            else:
                self._index[ind.key] = merge_indicator(stored, ind)
                updated += 1
            seen.append(ind)
        # stable sort: ties keep arrival order
        for ind in sorted(seen, key=lambda i: i.last_seen):
            self._touch(ind.key)
        logger.info(f"Merged {inserted} new and {updated} known indicators; index holds {len(self._index)}")
        self._snapshot = self._project(run)
        return self._snapshot

    def _touch(self, key: str) -> None:
        self._recent.pop(key, None)
        self._recent[key] = None
        while len(self._recent) > self.recent_capacity:
            self._recent.popitem(last=False)

    def _project(self, run: Optional[AggregationRun]) -> Snapshot:
        now = datetime.now(timezone.utc)
        values = list(self._index.values())
        by_severity = Counter(ind.severity for ind in values)
        self._trend.append(
            TrendPoint(
                timestamp=now,
                total=len(values),
                critical=by_severity[Severity.CRITICAL],
                high=by_severity[Severity.HIGH],
                medium=by_severity[Severity.MEDIUM],
                low=by_severity[Severity.LOW],
            )
        )
        del self._trend[:-TREND_LENGTH]
        self._version += 1
        return Snapshot(
            version=self._version,
            generated_at=now,
            total=len(values),
            recent=tuple(self._index[k] for k in reversed(self._recent)),
            by_type=distribution(values, lambda i: [i.type.value], self.top_k),
            by_source=distribution(values, lambda i: sorted(i.sources), self.top_k),
            by_severity=distribution(values, lambda i: [i.severity.value], self.top_k),
            by_family=distribution(values, lambda i: [i.family] if i.family else [], self.top_k),
            sources=tuple(run.outcomes) if run else (),
            errors=tuple(run.errors) if run else (),
            run_started_at=run.started_at if run else None,
            run_elapsed_ms=run.elapsed_ms if run else 0.0,
            run_indicator_count=run.indicator_count if run else 0,
            trend=tuple(self._trend),
        )

    def search(self, query: str) -> List[Indicator]:
        q = query.strip().lower()
        if not q:
            return []
        return [
            ind
            for ind in list(self._index.values())
            if q in ind.value
            or (ind.family and q in ind.family.lower())
            or (ind.threat_type and q in ind.threat_type.lower())
            or any(q in tag for tag in ind.tags)
        ]

    def by_family(self, family: str) -> List[Indicator]:
        f = family.strip().lower()
        return [ind for ind in list(self._index.values()) if ind.family and f in ind.family.lower()]
