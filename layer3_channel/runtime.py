"""
Layer 3 — Vision Runtime
Process-wide handle on the vision library. Loading happens once, in the
background, and completion is signalled through a readiness event.
"""
import importlib
import logging
import threading
from typing import Callable, List, Optional

import numpy as np

from error_handlers import VisionInitError

logger = logging.getLogger(__name__)

ReadyListener = Callable[[Optional[VisionInitError]], None]


class VisionRuntime:
    """
    One-time asynchronous loader for OpenCV.

    No frame may be processed before `is_ready` is set. A failed load is
    reported once and leaves detection unavailable until restart.
    """

    def __init__(self, module_name: str = "cv2"):
        """
        Initialize vision runtime

        Args:
            module_name: Import name of the vision library
        """
        self.module_name = module_name
        self.version: Optional[str] = None

        self._ready = threading.Event()
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[VisionInitError] = None
        self._listeners: List[ReadyListener] = []

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def error(self) -> Optional[VisionInitError]:
        return self._error

    def add_listener(self, listener: ReadyListener):
        """
        Register a callback for load completion.

        The callback receives None on success or the VisionInitError on
        failure. Registering after completion calls it immediately.
        """
        with self._lock:
            if not self._done.is_set():
                self._listeners.append(listener)
                return
        listener(self._error)

    def load_async(self) -> threading.Thread:
        """Start loading in the background (no-op if already started)."""
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._load, name="vision-runtime-loader", daemon=True
                )
                self._thread.start()
                logger.info(f"Loading vision library '{self.module_name}' in background")
            return self._thread

    def load(self, timeout: Optional[float] = None) -> bool:
        """Load and block until finished. Returns True when ready."""
        self.load_async()
        return self.wait_ready(timeout)

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until loading completes. Returns True only on success."""
        self._done.wait(timeout)
        return self._ready.is_set()

    def _load(self):
        try:
            cv = importlib.import_module(self.module_name)
            # Probe one primitive so a broken build fails here, not mid-frame
            cv.cvtColor(np.zeros((2, 2, 3), dtype=np.uint8), cv.COLOR_BGR2GRAY)
            self.version = getattr(cv, '__version__', 'unknown')
        except Exception as e:
            self._error = VisionInitError(e)
            logger.error(f"{self._error.error_code}: {self._error.message}")
        else:
            self._ready.set()
            logger.info(f"Vision library loaded: {self.module_name} {self.version}")
        finally:
            with self._lock:
                self._done.set()
                listeners, self._listeners = self._listeners, []

        for listener in listeners:
            try:
                listener(self._error)
            except Exception:
                logger.exception("Vision runtime listener failed")


_default_runtime: Optional[VisionRuntime] = None
_default_lock = threading.Lock()


def get_runtime() -> VisionRuntime:
    """Shared process-wide runtime."""
    global _default_runtime
    with _default_lock:
        if _default_runtime is None:
            _default_runtime = VisionRuntime()
        return _default_runtime
