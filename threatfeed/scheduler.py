"""
Scheduler/notifier: the consumer-facing side of the engine.

A cycle is orchestrator.run -> store.merge -> cache.put -> notify. At most one
cycle is in flight. Triggers that arrive mid-cycle (timer ticks, activity
signals) collapse into a single pending re-run; a forced refresh arriving
mid-cycle waits for the in-flight cycle and returns its snapshot.
"""

import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from .cache import SnapshotCache
from .orchestrator import FetchOrchestrator
from .schemas import Indicator, Snapshot, SourceConfig
from .store import IndicatorStore

logger = logging.getLogger(__name__)

Subscriber = Callable[[Snapshot], None]


class _Subscription:
    """Delivers snapshots to one callback in generation order."""

    def __init__(self, callback: Subscriber):
        self.callback = callback
        self.lock = threading.Lock()
        self.last: Optional[datetime] = None

    def deliver(self, snapshot: Snapshot) -> None:
        with self.lock:
            if self.last is not None and snapshot.generated_at < self.last:
                return
            self.last = snapshot.generated_at
            self.callback(snapshot)


class FeedScheduler:
    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        sources: Sequence[SourceConfig],
        store: IndicatorStore,
        cache: SnapshotCache,
        interval: float = 30.0,
        cache_key: str = "threatfeed:snapshot",
        cache_ttl: float = 60.0,
    ):
        self.orchestrator = orchestrator
        self.sources = list(sources)
        self.store = store
        self.cache = cache
        self.interval = interval
        self.cache_key = cache_key
        self.cache_ttl = cache_ttl

        self._snapshot: Snapshot = store.snapshot
        self._cond = threading.Condition()
        self._running = False
        self._pending = False
        self._completed = 0
        self._cycle_thread: Optional[int] = None

        self._subscribers: Dict[int, _Subscription] = {}
        self._sub_lock = threading.Lock()
        self._sub_ids = itertools.count(1)

        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # consumer interface

    def get_snapshot(self) -> Snapshot:
        with self._cond:
            return self._snapshot

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._sub_lock:
            token = next(self._sub_ids)
            subscription = self._subscribers[token] = _Subscription(callback)
        try:
            subscription.deliver(self.get_snapshot())
        except Exception:
            logger.exception("Subscriber raised while handling snapshot")

        def unsubscribe() -> None:
            with self._sub_lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def refresh(self, force: bool = False) -> Snapshot:
        if not force:
            fresh = self._fresh_snapshot()
            if fresh is not None:
                return fresh
        return self._execute(join=True)

    def notify_activity(self) -> None:
        """Consumer became active again (e.g. foregrounded); refresh soon."""
        with self._cond:
            if self._running:
                self._pending = True
                return
        if self._thread is not None and self._thread.is_alive():
            self._wake.set()
        else:
            threading.Thread(target=self._background_cycle, name="feed-refresh", daemon=True).start()

    def set_source_enabled(self, name: str, enabled: bool) -> None:
        for source in self.sources:
            if source.name == name:
                source.enabled = enabled
                logger.info(f"{name} {'enabled' if enabled else 'disabled'}")
                return
        raise KeyError(name)

    def search(self, query: str) -> List[Indicator]:
        return self.store.search(query)

    # timer

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="feed-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started, interval {self.interval:g}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            self._background_cycle()
            self._wake.wait(self.interval)
            self._wake.clear()

    # cycles

    def _background_cycle(self) -> None:
        try:
            self._execute(join=False)
        except Exception:
            logger.exception("Refresh cycle failed; keeping the previous snapshot")

    def _fresh_snapshot(self) -> Optional[Snapshot]:
        current = self.get_snapshot()
        age = (datetime.now(timezone.utc) - current.generated_at).total_seconds()
        if current.version > 0 and age < self.cache_ttl:
            return current
        cached = self.cache.get(self.cache_key)
        if cached is None:
            return None
        self._publish(cached, notify=False)
        return self.get_snapshot()

    def _execute(self, join: bool) -> Snapshot:
        with self._cond:
            if self._running:
                # a subscriber refreshing from inside a notification cannot wait on its own cycle
                if not join or self._cycle_thread == threading.get_ident():
                    self._pending = True
                    return self._snapshot
                seen = self._completed
                while self._completed == seen:
                    self._cond.wait()
                return self._snapshot
            self._running = True
            self._pending = False
            self._cycle_thread = threading.get_ident()

        try:
            while True:
                snapshot = self._cycle()
                with self._cond:
                    self._completed += 1
                    self._cond.notify_all()
                    if not self._pending:
                        self._running = False
                        self._cycle_thread = None
                        return snapshot
                    self._pending = False
                logger.debug("Running coalesced refresh")
        except BaseException:
            with self._cond:
                self._running = False
                self._pending = False
                self._cycle_thread = None
                self._completed += 1
                self._cond.notify_all()
            raise

    def _cycle(self) -> Snapshot:
        run = self.orchestrator.run(self.sources)
        snapshot = self.store.merge(run.indicators, run)
        try:
            self.cache.put(self.cache_key, snapshot, self.cache_ttl)
        except OSError as e:
            logger.warning(f"Could not write snapshot to cache: {e}")
        self._publish(snapshot)
        return snapshot

    def _publish(self, snapshot: Snapshot, notify: bool = True) -> None:
        with self._cond:
            # version 0 is the empty placeholder and yields to anything
            if self._snapshot.version and snapshot.generated_at < self._snapshot.generated_at:
                return
            self._snapshot = snapshot
        if notify:
            self._notify(snapshot)

    def _notify(self, snapshot: Snapshot) -> None:
        with self._sub_lock:
            subscriptions = list(self._subscribers.values())
        for subscription in subscriptions:
            try:
                subscription.deliver(snapshot)
            except Exception:
                logger.exception("Subscriber raised while handling snapshot")
