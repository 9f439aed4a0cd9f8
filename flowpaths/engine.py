import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from .anchors import AnchorPoint
from .config import PathConfig
from .field_store import SegmentedField, SegmentedFieldStore
from .focus_data import FocusData, extract_focus_data
from .models import CaseStudy, FocusWindow
from .trajectory import Path, compute_paths

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recomputation:
    focus_data: FocusData
    paths: Tuple[Path, ...]
    generation: int


class FlowPathEngine:
    """
    Drives recomputations for focus changes.

    Each request clones the focus and is stamped with a generation number and
    the strata option it needs. When that strata option is resident the paths
    are computed right away in the calling thread; otherwise the load runs on
    the executor and the result is applied only if no newer request has been
    made in the meantime. Superseded requests resolve to None.
    """

    def __init__(self, store: SegmentedFieldStore, case_study: CaseStudy,
                 anchors: Sequence[AnchorPoint], interpolator,
                 config: Optional[PathConfig] = None, executor=None,
                 displacement=None):
        self.store = store
        self.case_study = case_study
        self.anchors = list(anchors)
        self.interpolator = interpolator
        self.config = config or PathConfig()
        self.displacement = displacement
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="flowpaths-load")

        self._lock = threading.Lock()
        self._generation = 0
        self._strata_token: Optional[int] = None
        self._current: Optional[Recomputation] = None
        self._pending = 0
        self._idle = threading.Event()
        self._idle.set()

    # ---------------------------
    # State
    # ---------------------------

    @property
    def current(self) -> Optional[Recomputation]:
        with self._lock:
            return self._current

    @property
    def strata_token(self) -> Optional[int]:
        with self._lock:
            return self._strata_token

    @property
    def busy(self) -> bool:
        return not self._idle.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until no request is pending. Returns False on timeout."""
        return self._idle.wait(timeout)

    def set_anchors(self, anchors: Sequence[AnchorPoint]) -> None:
        with self._lock:
            self.anchors = list(anchors)

    # ---------------------------
    # Requests
    # ---------------------------

    def request(self, focus: FocusWindow,
                on_complete: Optional[Callable[[Recomputation], None]] = None) -> "Future[Optional[Recomputation]]":
        focus = focus.clone()
        # misconfigured focus windows fail here, before anything is scheduled
        focus.segment_count(self.case_study)
        token = focus.strata_option_index
        self.case_study.strata_option(token)

        with self._lock:
            self._generation += 1
            generation = self._generation
            if self._strata_token is not None and self._strata_token != token:
                logger.info(f"Strata option changed {self._strata_token} -> {token}")
                self._current = None
            self._strata_token = token
            self._pending += 1
            self._idle.clear()

        result: Future = Future()
        if self.store.is_loaded(token):
            self._complete(result, generation, token, focus, on_complete, self.store.load(token))
            return result

        logger.debug(f"Request {generation}: loading strata option {token} in the background")
        load = self._executor.submit(self.store.load, token)
        load.add_done_callback(
            lambda f: self._on_loaded(f, result, generation, token, focus, on_complete))
        return result

    def _is_stale(self, generation: int, token: int) -> bool:
        with self._lock:
            return generation != self._generation or token != self._strata_token

    def _release(self) -> None:
        with self._lock:
            self._pending -= 1
            if self._pending == 0:
                self._idle.set()

    def _on_loaded(self, load: Future, result: Future, generation: int, token: int,
                   focus: FocusWindow, on_complete) -> None:
        exc = load.exception()
        if exc is not None:
            logger.error(f"Request {generation}: loading strata option {token} failed: {exc}")
            result.set_exception(exc)
            self._release()
            return
        self._complete(result, generation, token, focus, on_complete, load.result())

    def _complete(self, result: Future, generation: int, token: int, focus: FocusWindow,
                  on_complete, field: SegmentedField) -> None:
        try:
            if self._is_stale(generation, token):
                logger.info(f"Request {generation} superseded; discarded")
                result.set_result(None)
                return
            try:
                focus_data = extract_focus_data(field, focus, self.case_study)
                paths = compute_paths(focus_data, self.anchors, self.interpolator,
                                      self.config, self.displacement)
            except Exception as e:
                logger.error(f"Request {generation} failed: {e}")
                result.set_exception(e)
                return

            rec = Recomputation(focus_data=focus_data, paths=tuple(paths), generation=generation)
            with self._lock:
                applied = generation == self._generation and token == self._strata_token
                if applied:
                    self._current = rec
            if not applied:
                logger.info(f"Request {generation} superseded while computing; discarded")
                result.set_result(None)
                return
            result.set_result(rec)
            if on_complete is not None:
                on_complete(rec)
        finally:
            self._release()

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
