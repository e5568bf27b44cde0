"""
Keep-only-latest camera frame processing.

Camera frames arrive on their own clock. ``LatestFrameProcessor`` hands
them to a single worker thread through a one-slot mailbox: submitting a
frame while another is still pending replaces it, so under load the worker
always processes the most recent frame and intermediate frames are dropped.
Frame processing is serialized on the worker and never blocks the
submitting thread.

Examples
--------
>>> from slam_fusion.fusion.pipeline import LatestFrameProcessor, LumaFrame
>>> from slam_fusion.vision.feature_tracker import FeatureTracker
>>> tracker = FeatureTracker()
>>> with LatestFrameProcessor(lambda f: tracker.detect(f.luma, f.width, f.height)) as proc:
...     dropped = proc.submit(LumaFrame(bytes(320 * 240), 320, 240))
...     proc.wait_idle(timeout=1.0)
True
"""

import logging
import threading
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LumaFrame:
    """Single-channel 8-bit frame, row-major, with its capture time (seconds)."""

    luma: bytes
    width: int
    height: int
    timestamp: float = field(default_factory=time.monotonic)


class LatestFrameProcessor:
    """
    Worker thread with a single-slot, keep-latest frame mailbox.

    Parameters
    ----------
    handler : callable
        Called with each frame on the worker thread; its return value is
        the frame result.
    on_result : callable, optional
        Called with each result on the worker thread.
    name : str, optional
        Worker thread name.

    Attributes
    ----------
    processed_count : int
        Frames handled so far.
    dropped_count : int
        Frames replaced before the worker picked them up.
    latest_result : object
        Result of the most recently processed frame, or None.
    """

    def __init__(self, handler, on_result=None, name="frame-processor"):
        self.handler = handler
        self.on_result = on_result
        self.name = name
        self._condition = threading.Condition()
        self._pending = None
        self._busy = False
        self._running = False
        self._thread = None
        self.processed_count = 0
        self.dropped_count = 0
        self.latest_result = None

    def start(self):
        with self._condition:
            if self._running:
                return self
            self._running = True
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.debug(f"{self.name} started")
        return self

    def stop(self, timeout=None):
        """Stop the worker after the frame in progress; pending frames are discarded."""
        with self._condition:
            self._running = False
            if self._pending is not None:
                self.dropped_count += 1
                self._pending = None
            self._condition.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.debug(
            f"{self.name} stopped: {self.processed_count} processed, "
            f"{self.dropped_count} dropped"
        )

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    @property
    def is_running(self):
        with self._condition:
            return self._running

    def submit(self, frame):
        """
        Offer a frame to the worker, replacing any frame still waiting.

        Returns
        -------
        bool
            True if a pending frame was dropped to make room.
        """
        with self._condition:
            dropped = self._pending is not None
            if dropped:
                self.dropped_count += 1
            self._pending = frame
            self._condition.notify_all()
            return dropped

    def wait_idle(self, timeout=None):
        """
        Block until no frame is pending or in progress.

        Returns
        -------
        bool
            False if the timeout expired first.
        """
        with self._condition:
            return self._condition.wait_for(
                lambda: self._pending is None and not self._busy, timeout
            )

    def _run(self):
        while True:
            with self._condition:
                self._condition.wait_for(lambda: self._pending is not None or not self._running)
                if not self._running:
                    return
                frame = self._pending
                self._pending = None
                self._busy = True
            try:
                result = self.handler(frame)
                self.latest_result = result
                if self.on_result is not None:
                    self.on_result(result)
            except Exception:
                logger.exception(f"{self.name} failed to process frame")
            finally:
                with self._condition:
                    self.processed_count += 1
                    self._busy = False
                    self._condition.notify_all()
