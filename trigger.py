"""
Change-driven scheduling of composite passes.

The session hands over a snapshot of everything a composite depends on
(background readiness, QR source identity, selected guest, anchors, flags,
text style). A changed snapshot schedules one pass; changes that arrive
while a pass is pending are coalesced into it. The pass callback always reads
current state, so the last change is the one that ends up on the surface.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from config import RENDER_DEBOUNCE_S

logger = logging.getLogger(__name__)


class RenderTrigger:
    def __init__(self, render: Callable[[], None], debounce_s: float = RENDER_DEBOUNCE_S):
        self._render = render
        self._debounce_s = debounce_s
        self._last: Any = None
        self._dirty = False
        self._task: Optional[asyncio.Task] = None
        self.passes = 0

    def observe(self, snapshot: Any) -> bool:
        """Schedule a pass if snapshot differs from the last one seen."""
        if snapshot == self._last:
            return False
        self._last = snapshot
        self.schedule()
        return True

    def schedule(self) -> None:
        self._dirty = True
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while self._dirty:
            await asyncio.sleep(self._debounce_s)
            self._dirty = False
            self.passes += 1
            logger.debug("Composite pass %d", self.passes)
            self._render()

    async def flush(self) -> None:
        """Wait until no pass is pending."""
        while self.pending:
            await self._task
