import asyncio
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import Callable, Optional

from snapcam.infra.logging import get_logger

logger = get_logger(__name__)

class AsyncBridge:
    """
    Runs the controller's asyncio loop in a background thread while Qt owns
    the main thread. The Qt side submits coroutines; results come back
    through Qt signals emitted by controller listeners.
    """

    def __init__(self):
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the asyncio event loop in a background thread."""
        logger.info("Starting asyncio bridge in background thread")
        self.thread = threading.Thread(target=self._run_event_loop, daemon=True)
        self.thread.start()

        while self.loop is None:
            time.sleep(0.01)

    def _run_event_loop(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self.loop = loop
        loop.run_forever()
        loop.close()
        logger.debug("asyncio loop closed")

    def run_coroutine(self, coro) -> Future:
        """Schedule a coroutine on the loop. Callable from the Qt thread."""
        if self.loop is None:
            raise RuntimeError("asyncio loop not started")

        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(self._log_failure)
        return future

    def call_soon(self, func: Callable, *args) -> None:
        """Run a plain callable on the loop thread."""
        if self.loop is None:
            raise RuntimeError("asyncio loop not started")
        self.loop.call_soon_threadsafe(func, *args)

    @staticmethod
    def _log_failure(future: Future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Background task failed: {error!r}")

    def stop(self, timeout: float = 2.0) -> None:
        """Cancel pending tasks and stop the loop."""
        if self.loop is None or not self.loop.is_running():
            return

        logger.info("Stopping asyncio bridge")
        future = asyncio.run_coroutine_threadsafe(self._shutdown(), self.loop)
        try:
            future.result(timeout=timeout)
        except FutureTimeout:
            logger.warning("asyncio bridge did not shut down in time")
        if self.thread is not None:
            self.thread.join(timeout=timeout)

    async def _shutdown(self) -> None:
        tasks = [task for task in asyncio.all_tasks(self.loop)
                 if task is not asyncio.current_task()]
        logger.info(f"Cancelling {len(tasks)} pending tasks")
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.loop.call_soon(self.loop.stop)
