# storefront/services/quantity_debouncer.py
import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Dict

from storefront.utils.logging import get_logger
from storefront.utils.settings import QUANTITY_DEBOUNCE_SECONDS

logger = get_logger(__name__)

RowId = int | str
CommitFn = Callable[[RowId, int], Awaitable[Any]]


class LineState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMMITTED = "committed"


class _Line:
    def __init__(self, quantity: int):
        self.quantity = quantity
        self.state = LineState.IDLE
        self.timer: asyncio.TimerHandle | None = None
        # one commit at a time per line, later commits wait for the earlier one
        self.lock = asyncio.Lock()
        self.commits: set[asyncio.Task] = set()


class QuantityDebouncer:
    """
    Coalesces quantity edits per cart line.

    Every edit updates the local quantity right away and restarts the quiet
    period timer; when the timer expires one commit is sent with the latest
    quantity. Commits for the same line never overlap. close() drops pending
    timers so nothing is sent after teardown.
    """

    def __init__(
        self,
        commit: CommitFn,
        delay: float | None = None,
        on_local_change: Callable[[RowId, int], None] | None = None,
        on_error: Callable[[RowId, Exception], Any] | None = None,
    ):
        self.commit = commit
        self.delay = QUANTITY_DEBOUNCE_SECONDS if delay is None else delay
        self.on_local_change = on_local_change
        self.on_error = on_error
        self._lines: Dict[RowId, _Line] = {}
        self._closed = False

    # query

    def quantity(self, row_id: RowId) -> int | None:
        line = self._lines.get(row_id)
        return line.quantity if line else None

    def state(self, row_id: RowId) -> LineState | None:
        line = self._lines.get(row_id)
        return line.state if line else None

    @property
    def has_pending(self) -> bool:
        return any(line.timer is not None for line in self._lines.values())

    # commands

    def track(self, row_id: RowId, quantity: int) -> None:
        """Register a line with its server-side quantity (no-op while an edit is pending)."""
        line = self._lines.get(row_id)
        if line is None:
            self._lines[row_id] = _Line(quantity)
        elif line.timer is None:
            line.quantity = quantity

    def increment(self, row_id: RowId) -> bool:
        return self.set_quantity(row_id, self._current(row_id) + 1)

    def decrement(self, row_id: RowId) -> bool:
        return self.set_quantity(row_id, self._current(row_id) - 1)

    def set_quantity(self, row_id: RowId, quantity: int) -> bool:
        if self._closed:
            logger.warning(f"Quantity edit for line {row_id} after close ignored")
            return False

        if quantity < 1:
            return False

        line = self._lines.setdefault(row_id, _Line(quantity))
        line.quantity = quantity
        line.state = LineState.PENDING

        if self.on_local_change:
            self.on_local_change(row_id, quantity)

        if line.timer is not None:
            line.timer.cancel()
        loop = asyncio.get_running_loop()
        line.timer = loop.call_later(self.delay, self._fire, row_id)
        return True

    def discard(self, row_id: RowId) -> None:
        """Forget a line (removed from the cart); its pending edit is dropped."""
        line = self._lines.pop(row_id, None)
        if line and line.timer is not None:
            line.timer.cancel()

    async def flush(self) -> None:
        """Send every pending edit now and wait for all commits to finish."""
        for row_id, line in list(self._lines.items()):
            if line.timer is not None:
                line.timer.cancel()
                self._fire(row_id)
        tasks = [t for line in self._lines.values() for t in line.commits]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def close(self) -> None:
        self._closed = True
        for line in self._lines.values():
            if line.timer is not None:
                line.timer.cancel()
                line.timer = None
        logger.info("Quantity debouncer closed, pending edits dropped")

    # internals

    def _current(self, row_id: RowId) -> int:
        line = self._lines.get(row_id)
        if line is None:
            raise KeyError(f"Cart line {row_id} is not tracked")
        return line.quantity

    def _fire(self, row_id: RowId) -> None:
        line = self._lines.get(row_id)
        if line is None or self._closed:
            return
        line.timer = None
        task = asyncio.get_running_loop().create_task(self._commit(row_id, line))
        line.commits.add(task)
        task.add_done_callback(line.commits.discard)

    async def _commit(self, row_id: RowId, line: _Line) -> None:
        async with line.lock:
            # a newer edit restarted the timer while we waited, it will send
            if line.timer is not None:
                return
            quantity = line.quantity
            logger.info(f"Committing quantity {quantity} for cart line {row_id}")
            try:
                await self.commit(row_id, quantity)
            except Exception as e:
                line.state = LineState.IDLE
                logger.error(f"Quantity commit for line {row_id} failed: {e}")
                if self.on_error and not self._closed:
                    result = self.on_error(row_id, e)
                    if inspect.isawaitable(result):
                        await result
                return

            if line.timer is None and line.quantity == quantity:
                line.state = LineState.COMMITTED
