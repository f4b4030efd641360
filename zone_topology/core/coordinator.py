"""
Resolution Coordinator - Orchestrates external resolution runs

This module drives one resolution run per RunKey: it derives candidate
hostnames from the record set, serves what it can from the resolution
cache, dispatches the misses to the batch backend (falling back to the
DoH resolver when the backend is absent), tracks progress and publishes
the merged result only if the run is still the desired one.

The coordinator is a small state machine:
Idle -> Resolving(key) -> Ready(key), and back to Resolving(new key)
whenever the inputs change.
"""

import hashlib
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .cache import ResolutionCache, cache_key
from .graph_builder import candidate_hostnames, records_fingerprint
from .models import ProgressState, Record, ResolutionResult
from ..resolvers.base_resolver import BackendUnavailable, BatchResolver, ExternalResolver
from ..utils.cancellation import CancellationToken, OperationCancelled
from ..utils.validators import ResolverConfig, normalize_name

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressState], None]


class CoordinatorState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    READY = "ready"


def compute_run_key(
    records: Sequence[Record], zone: str, config: ResolverConfig, refresh_counter: int = 0
) -> str:
    """Deterministic fingerprint of everything a resolution run depends on."""
    raw = "|".join(
        [
            records_fingerprint(records),
            normalize_name(zone),
            config.fingerprint(),
            str(refresh_counter),
        ]
    )
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


class _ProgressTracker:
    """Counts resolved names; ``total`` only grows and ``done`` never passes it."""

    def __init__(self, candidates: Sequence[str]):
        self.seen = set(candidates)
        self.total = len(self.seen)
        self.done = 0

    def complete(self) -> None:
        self.done = min(self.done + 1, self.total)

    def absorb(self, result: ResolutionResult) -> None:
        for hop in list(result.chain) + [result.terminal]:
            name = normalize_name(hop)
            if name and name not in self.seen:
                self.seen.add(name)
                self.total += 1
                self.done += 1

    def snapshot(self, running: bool = True) -> ProgressState:
        return ProgressState(running=running, total=self.total, done=min(self.done, self.total))


class _Run:
    def __init__(self, key: str, generation: int, token: CancellationToken):
        self.key = key
        self.generation = generation
        self.token = token


class ResolutionCoordinator:
    """Runs and publishes external resolutions for one zone view."""

    def __init__(
        self,
        backend: Optional[BatchResolver] = None,
        fallback: Optional[ExternalResolver] = None,
        cache: Optional[ResolutionCache] = None,
        clock: Optional[Callable[[], float]] = None,
        max_workers: int = 2,
    ):
        """
        Initialize the coordinator.

        Args:
            backend: Batch resolver tried first; None means no backend channel
            fallback: Per-hostname resolver used when the backend yields nothing
            cache: Resolution cache; a private one is created when omitted
            clock: Time source for the private cache
            max_workers: Worker threads for ``submit``
        """
        self.backend = backend
        self.fallback = fallback
        self.cache = cache if cache is not None else ResolutionCache(clock=clock)
        self.state = CoordinatorState.IDLE
        self.published_key: Optional[str] = None
        self.results: Dict[str, ResolutionResult] = {}
        self._desired_key: Optional[str] = None
        self._generation = 0
        self._current: Optional[_Run] = None
        self._progress = ProgressState()
        self._listeners: List[ProgressListener] = []
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="coordinator")

    @property
    def progress(self) -> ProgressState:
        with self._lock:
            return self._progress

    @property
    def desired_key(self) -> Optional[str]:
        return self._desired_key

    def add_progress_listener(self, listener: ProgressListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _set_progress(self, progress: ProgressState) -> None:
        self._progress = progress
        for listener in list(self._listeners):
            try:
                listener(progress)
            except Exception as e:
                logger.warning(f"Progress listener failed: {e}")

    def _is_current(self, run: _Run) -> bool:
        return run.generation == self._generation and run.key == self._desired_key

    def _begin(
        self,
        records: Sequence[Record],
        zone: str,
        config: ResolverConfig,
        refresh_counter: int,
        force: bool,
    ) -> Tuple[Optional[_Run], Dict[str, ResolutionResult]]:
        key = compute_run_key(records, zone, config, refresh_counter)
        with self._lock:
            if not force and key == self.published_key and key == self._desired_key:
                logger.debug(f"Run key unchanged for {zone}, reusing published resolutions")
                return None, self.results

            if self._current is not None:
                self._current.token.cancel("superseded by a newer run")
            self._generation += 1
            run = _Run(key, self._generation, CancellationToken())
            self._current = run
            self._desired_key = key
            self.state = CoordinatorState.RESOLVING
            self._set_progress(ProgressState(running=True, total=0, done=0))
        return run, {}

    def run(
        self,
        records: Sequence[Record],
        zone: str,
        config: ResolverConfig,
        refresh_counter: int = 0,
        force: bool = False,
    ) -> Optional[Dict[str, ResolutionResult]]:
        """
        Resolve the zone's candidate hostnames synchronously.

        Returns:
            The published resolution map, or None if a newer run superseded this one
        """
        run, published = self._begin(records, zone, config, refresh_counter, force)
        if run is None:
            return published
        return self._execute(run, records, config)

    def submit(
        self,
        records: Sequence[Record],
        zone: str,
        config: ResolverConfig,
        refresh_counter: int = 0,
        force: bool = False,
    ) -> Future:
        """Start a run in the background; any in-flight run with another key is cancelled."""
        run, published = self._begin(records, zone, config, refresh_counter, force)
        if run is None:
            future: Future = Future()
            future.set_result(published)
            return future
        return self._executor.submit(self._execute, run, records, config)

    def cancel(self) -> None:
        """Cancel the in-flight run, if any, without publishing anything."""
        with self._lock:
            if self._current is None:
                return
            self._current.token.cancel("cancelled")
            self._current = None
            self._generation += 1
            self._desired_key = self.published_key
            self.state = CoordinatorState.READY if self.published_key else CoordinatorState.IDLE
            self._set_progress(
                ProgressState(running=False, total=self._progress.total, done=self._progress.done)
            )

    def shutdown(self) -> None:
        self.cancel()
        self._executor.shutdown(wait=False)

    def _report(self, run: _Run, tracker: _ProgressTracker) -> None:
        with self._lock:
            if self._is_current(run):
                self._set_progress(tracker.snapshot())

    def _execute(
        self, run: _Run, records: Sequence[Record], config: ResolverConfig
    ) -> Optional[Dict[str, ResolutionResult]]:
        candidates = candidate_hostnames(records)
        tracker = _ProgressTracker(candidates)
        by_name: Dict[str, ResolutionResult] = {}

        with self._lock:
            if not self._is_current(run):
                return None
            self.cache.bind(run.key)

        def index(name: str, result: ResolutionResult, cache_it: bool) -> None:
            requested = normalize_name(name)
            if requested:
                by_name[requested] = result
            names = [normalize_name(hop) for hop in result.chain] + [normalize_name(result.terminal)]
            for alias in names:
                if alias and alias not in by_name:
                    by_name[alias] = result
            if not cache_it:
                return
            with self._lock:
                if not self._is_current(run):
                    return
                if requested:
                    self.cache.put(cache_key(config, requested), result)
                for alias in names:
                    if alias and alias != requested and self.cache.peek(cache_key(config, alias)) is None:
                        self.cache.put(cache_key(config, alias), result)

        def absorb(name: str, result: ResolutionResult) -> None:
            tracker.complete()
            index(name, result, cache_it=True)
            tracker.absorb(result)
            self._report(run, tracker)

        try:
            misses = []
            for name in candidates:
                cached = by_name.get(name) or self.cache.get(cache_key(config, name))
                if cached is None:
                    misses.append(name)
                    continue
                tracker.complete()
                index(name, cached, cache_it=False)
                tracker.absorb(cached)
            self._report(run, tracker)
            logger.info(
                f"Resolving {len(candidates)} candidate hostname(s): "
                f"{len(candidates) - len(misses)} cached, {len(misses)} to resolve"
            )

            if misses:
                self._dispatch(misses, config, run.token, absorb)
            run.token.raise_if_cancelled()
        except OperationCancelled as e:
            logger.info(f"Resolution run {run.key[:12]} cancelled: {e}")
            return None

        for name in candidates:
            if name not in by_name:
                by_name[name] = ResolutionResult.placeholder(name)

        with self._lock:
            if not self._is_current(run):
                logger.info(f"Discarding stale resolution run {run.key[:12]}")
                return None
            self.results = by_name
            self.published_key = run.key
            self._current = None
            self.state = CoordinatorState.READY
            self._set_progress(ProgressState(running=False, total=tracker.total, done=tracker.total))
        logger.info(f"Published {len(by_name)} resolution(s) for run {run.key[:12]}")
        return by_name

    def _dispatch(
        self,
        misses: List[str],
        config: ResolverConfig,
        token: CancellationToken,
        absorb: Callable[[str, ResolutionResult], None],
    ) -> None:
        batch = None
        if self.backend is not None:
            try:
                batch = self.backend.resolve_batch(misses, config, token=token)
            except OperationCancelled:
                raise
            except BackendUnavailable as e:
                logger.info(f"Batch backend unavailable: {e}")
            except Exception as e:
                logger.warning(f"Batch backend call failed: {e}")

        if batch is not None and batch.resolutions:
            for resolution in batch.resolutions:
                token.raise_if_cancelled()
                name = resolution.requested_name or (resolution.chain[0] if resolution.chain else "")
                absorb(name, resolution)
            return

        if self.fallback is None:
            logger.warning(f"No fallback resolver configured, {len(misses)} hostname(s) left unresolved")
            return

        logger.info(f"Falling back to per-hostname resolution for {len(misses)} hostname(s)")
        try:
            self.fallback.resolve(misses, config, token=token, on_result=absorb)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning(f"Fallback resolution failed: {e}")
