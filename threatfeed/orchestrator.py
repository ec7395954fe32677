"""
Fetch orchestration.

Every enabled source runs on its own worker. Each adapter attempt runs on a
daemon thread and is raced against the source's timeout; an attempt that loses
the race is abandoned, not interrupted, and whatever it returns later is
dropped.
"""

import inspect
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .adapters import get_adapter
from .canonical import canonicalize
from .errors import ConfigurationError, EmptyResultError, FeedError, FormatError
from .schemas import (
    AggregationRun,
    Indicator,
    OutcomeStatus,
    SourceConfig,
    SourceError,
    SourceOutcome,
)
from .utils.http import Http

logger = logging.getLogger(__name__)


class AttemptTimeout(Exception):
    pass


def call_with_timeout(fn: Callable[[], Any], timeout: float) -> Any:
    future: Future = Future()

    def target():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn())
        except BaseException as e:  # handed to the waiting caller
            future.set_exception(e)

    threading.Thread(target=target, name="feed-attempt", daemon=True).start()
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        raise AttemptTimeout(f"timed out after {timeout:g}s") from None


class FetchOrchestrator:
    def __init__(
        self,
        http: Http,
        base_delay: float = 1.0,
        max_workers: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.http = http
        self.base_delay = base_delay
        self.max_workers = max_workers
        self.sleep = sleep

    def run(self, sources: Sequence[SourceConfig]) -> AggregationRun:
        started_at = datetime.now(timezone.utc)
        t0 = time.monotonic()
        run = AggregationRun(started_at=started_at)

        active: List[Tuple[SourceConfig, Callable]] = []
        for source in sources:
            if not source.enabled:
                logger.debug(f"Source {source.name} is disabled")
                run.outcomes.append(SourceOutcome(source=source.name, status=OutcomeStatus.SKIPPED, message="disabled"))
                continue
            try:
                active.append((source, self._resolve(source)))
            except ConfigurationError as e:
                logger.warning(f"Skipping {source.name}: {e}")
                run.outcomes.append(SourceOutcome(source=source.name, status=OutcomeStatus.FAILURE, message=str(e)))
                run.errors.append(SourceError(source=source.name, kind="ConfigurationError", message=str(e)))

        if active:
            workers = self.max_workers or len(active)
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="feed-source") as pool:
                futures = [pool.submit(self._run_source, source, fetch) for source, fetch in active]
                # result() re-raises canonicalizer defects here
                results = [f.result() for f in futures]
            for outcome, indicators, error in results:
                run.outcomes.append(outcome)
                run.indicators.extend(indicators)
                if error is not None:
                    run.errors.append(error)

        run.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            f"Aggregation finished in {run.elapsed_ms:.0f}ms: "
            f"{run.successful_sources}/{run.total_sources} sources, {run.indicator_count} indicators"
        )
        if run.errors:
            logger.warning(f"Failed sources: {', '.join(e.source for e in run.errors)}")
        return run

    def _resolve(self, source: SourceConfig) -> Callable:
        try:
            fetch = get_adapter(source.adapter)
        except KeyError:
            raise ConfigurationError(f"unknown adapter {source.adapter!r}") from None
        if source.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {source.timeout}")
        if source.retries < 0:
            raise ConfigurationError(f"retries must not be negative, got {source.retries}")
        try:
            inspect.signature(fetch).bind(self.http, **source.options)
        except TypeError as e:
            raise ConfigurationError(f"bad options for {source.adapter}: {e}") from None
        return fetch

    def _run_source(
        self, source: SourceConfig, fetch: Callable
    ) -> Tuple[SourceOutcome, List[Indicator], Optional[SourceError]]:
        t0 = time.monotonic()
        attempts = 0
        status = OutcomeStatus.FAILURE
        kind, message = "", ""
        records: Optional[List] = None

        while True:
            attempts += 1
            try:
                records = call_with_timeout(lambda: fetch(self.http, **source.options), source.timeout)
                break
            except EmptyResultError as e:
                logger.info(f"{source.name}: {e}")
                records = []
                break
            except AttemptTimeout as e:
                status, kind, message = OutcomeStatus.TIMEOUT, "timeout", str(e)
                retryable = True
            except FormatError as e:
                status, kind, message = OutcomeStatus.FAILURE, type(e).__name__, str(e)
                retryable = False
            except FeedError as e:
                status, kind, message = OutcomeStatus.FAILURE, type(e).__name__, str(e)
                retryable = e.retryable
            except Exception as e:
                logger.error(f"Adapter {source.adapter} raised unexpectedly", exc_info=True)
                status, kind, message = OutcomeStatus.FAILURE, type(e).__name__, str(e)
                retryable = False

            if not retryable or attempts > source.retries:
                break
            delay = attempts * self.base_delay
            logger.warning(f"{source.name} attempt {attempts} failed ({message}); retrying in {delay:g}s")
            self.sleep(delay)

        elapsed_ms = (time.monotonic() - t0) * 1000
        if records is None:
            logger.warning(f"{source.name} failed after {attempts} attempt(s): {message}")
            outcome = SourceOutcome(
                source=source.name, status=status, message=message, attempts=attempts, elapsed_ms=elapsed_ms
            )
            return outcome, [], SourceError(source=source.name, kind=kind, message=message)

        indicators = self._canonicalize(source, records)
        logger.info(f"✓ Fetched {len(records)} records from {source.name}, {len(indicators)} indicators")
        outcome = SourceOutcome(
            source=source.name,
            status=OutcomeStatus.SUCCESS,
            attempts=attempts,
            count=len(indicators),
            elapsed_ms=elapsed_ms,
        )
        return outcome, indicators, None

    @staticmethod
    def _canonicalize(source: SourceConfig, records: List) -> List[Indicator]:
        now = datetime.now(timezone.utc)
        indicators = []
        for raw in records:
            indicator = canonicalize(source.adapter, raw, now=now)
            if indicator is None:
                continue
            if source.name != source.adapter:
                indicator = indicator.model_copy(update={"source": source.name, "sources": frozenset([source.name])})
            indicators.append(indicator)
        return indicators
