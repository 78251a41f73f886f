"""Process-wide rendering engine with an explicit lifecycle.

CairoSVG and PyMuPDF are CPU-bound and blocking, so every render runs in the
engine's thread pool instead of on the event loop. The engine is started on
first use (or explicitly from the app lifespan) and shut down from the
lifespan's ``finally``. Each render goes through ``session()``, which holds one
of ``max_workers`` slots and releases it on every exit path.

    engine = RenderEngine(max_workers=2)
    async with engine.session() as session:
        pdf_path = await session.run(render_fn, arg)
    await engine.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from functools import partial
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EngineClosedError(RuntimeError):
    """Raised when a session is used after it was released."""


class RenderSession:
    """A borrowed slot on the engine; valid only inside ``engine.session()``."""

    def __init__(self, executor: ThreadPoolExecutor) -> None:
        self._executor = executor
        self._closed = False

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if self._closed:
            raise EngineClosedError("Render session already released")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, partial(fn, *args, **kwargs)
        )

    def close(self) -> None:
        self._closed = True


class RenderEngine:
    def __init__(self, max_workers: int = 2) -> None:
        self.max_workers = max(1, max_workers)
        self._executor: ThreadPoolExecutor | None = None
        self._slots: asyncio.Semaphore | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._executor is not None

    def start(self) -> None:
        """Start the worker pool. Safe to call more than once."""
        with self._lock:
            if self._executor is not None:
                return
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="render"
            )
            self._slots = asyncio.Semaphore(self.max_workers)
        logger.info("render.engine.started", extra={"workers": self.max_workers})

    async def shutdown(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
            self._slots = None
        if executor is None:
            return
        await asyncio.to_thread(executor.shutdown, wait=True)
        logger.info("render.engine.stopped")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[RenderSession]:
        self.start()
        slots = self._slots
        executor = self._executor
        if slots is None or executor is None:
            raise EngineClosedError("Render engine is shutting down")

        async with slots:
            session = RenderSession(executor)
            try:
                yield session
            finally:
                session.close()
