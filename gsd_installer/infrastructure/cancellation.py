"""Cancellation contract for staged installs.

``StagingGuard`` is entered before staging begins. Until ``commit()`` it owns
one staging directory: any exception or interrupt removes that directory and
nothing else. Inside ``swapping()`` interrupts are recorded instead of raised,
so the rename sequence always runs to completion.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
from pathlib import Path
import shutil
import signal
import threading
from types import FrameType, TracebackType
from typing import Any, Iterator

from gsd_installer.errors import InstallInterrupted

logger = logging.getLogger(__name__)

_SIGNALS = tuple(s for s in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)) if s is not None)


class StagingGuard:
    def __init__(self, staging_dir: Path) -> None:
        self._staging_dir = staging_dir
        self._previous: dict[int, Any] = {}
        self._deferring = False
        self._pending: int | None = None
        self._committed = False

    def __enter__(self) -> "StagingGuard":
        if threading.current_thread() is threading.main_thread():
            for signum in _SIGNALS:
                self._previous[signum] = signal.signal(signum, self._handle)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        self._restore_handlers()
        if not self._committed:
            self.cleanup()
        if exc_type is not None and issubclass(exc_type, KeyboardInterrupt):
            raise InstallInterrupted("installation interrupted; staging directory removed, target root untouched") from exc
        return False

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        if self._deferring:
            logger.warning("interrupt received during swap; finishing the swap first")
            self._pending = signum
            return
        raise KeyboardInterrupt

    def _restore_handlers(self) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous = {}

    @contextmanager
    def swapping(self) -> Iterator[None]:
        self._deferring = True
        try:
            yield
        finally:
            self._deferring = False

    def commit(self) -> None:
        """Deregister the cleanup after a successful swap."""

        self._committed = True
        self._restore_handlers()
        if self._pending is not None:
            self._pending = None
            raise InstallInterrupted("interrupted after the swap completed; the new installation is in place")

    def cleanup(self) -> None:
        if not self._staging_dir.exists():
            return
        try:
            shutil.rmtree(self._staging_dir)
        except OSError as exc:
            logger.warning("could not remove staging directory %s: %s", self._staging_dir, exc)
            return
        logger.debug("removed staging directory %s", self._staging_dir)
