"""Media group aggregation.

Telegram delivers an album as several channel posts sharing one
``media_group_id``. They are collected here and published as one note.

The flush deadline is armed by the first fragment of a group and never
pushed back, so a steady stream of fragments cannot delay a group forever.
All table mutation happens without an await in between, which keeps it
atomic on a single event loop.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from .composer import ComposedPost, compose_content

logger = logging.getLogger("tgnostr.aggregator")

DEFAULT_FLUSH_DELAY = 2.0

FlushCallback = Callable[[str], Awaitable[object]]


@dataclass
class _Group:
    future: asyncio.Future
    text: str = ""
    emoji: str = ""
    forwarded_label: str = ""
    poll_content: str = ""
    # dict keeps insertion order and de-duplicates
    urls: dict[str, None] = field(default_factory=dict)
    on_flush: Optional[FlushCallback] = None
    timer: Optional[asyncio.TimerHandle] = None

    def merge(self, fragment: ComposedPost):
        if fragment.text and not self.text:
            self.text = fragment.text
        if fragment.emoji and not self.emoji:
            self.emoji = fragment.emoji
        if fragment.forwarded_label and not self.forwarded_label:
            self.forwarded_label = fragment.forwarded_label
        if fragment.poll_content and not self.poll_content:
            self.poll_content = fragment.poll_content
        for url in fragment.media_urls:
            if url:
                self.urls.setdefault(url, None)

    def render(self) -> str:
        return compose_content(
            self.forwarded_label,
            self.text,
            self.emoji,
            list(self.urls),
            self.poll_content,
        )


class MediaGroupAggregator:
    """Per-process table of open media groups.

    Usage:
        aggregator = MediaGroupAggregator(flush_delay=2.0)
        done = aggregator.enqueue(group_id, fragment, publish)
        await done  # resolves once the group has been delivered

    Groups are not shared across processes; an album split between two
    workers is published as two notes.
    """

    def __init__(self, flush_delay: float = DEFAULT_FLUSH_DELAY):
        self.flush_delay = flush_delay
        self._groups: dict[str, _Group] = {}
        self._flush_tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of groups waiting for their deadline."""
        return len(self._groups)

    def enqueue(
        self,
        group_id: str,
        fragment: ComposedPost,
        on_flush: Optional[FlushCallback] = None,
    ) -> asyncio.Future:
        """Add a fragment to its group.

        Args:
            group_id: Telegram media_group_id
            fragment: Composed content of one post in the group
            on_flush: Async delivery callback; the latest one given is used

        Returns:
            Future shared by every caller of the same open group. It resolves
            to None after delivery finished (or failed, which is logged).
        """
        if not group_id:
            raise ValueError("group_id is required")

        loop = asyncio.get_running_loop()
        group = self._groups.get(group_id)
        if group is None:
            group = _Group(future=loop.create_future())
            group.timer = loop.call_later(self.flush_delay, self._start_flush, group_id)
            self._groups[group_id] = group
            logger.debug(f"Media group {group_id} opened, flush in {self.flush_delay}s")

        group.merge(fragment)
        if on_flush is not None:
            group.on_flush = on_flush
        return group.future

    def _start_flush(self, group_id: str):
        group = self._groups.pop(group_id, None)
        if group is None:
            return
        task = asyncio.get_running_loop().create_task(self._flush(group_id, group))
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def _flush(self, group_id: str, group: _Group):
        try:
            content = group.render()
            if not content:
                logger.info(f"Media group {group_id} had no content, skipping")
                return
            if group.on_flush is None:
                logger.warning(f"Media group {group_id} has no delivery callback, dropping")
                return
            logger.info(f"Flushing media group {group_id} ({len(group.urls)} media)")
            await group.on_flush(content)
        except Exception as e:
            logger.error(f"Media group {group_id} delivery failed: {e}", exc_info=True)
        finally:
            if not group.future.done():
                group.future.set_result(None)

    async def shutdown(self):
        """Flush every open group now and wait for all deliveries."""
        for group_id in list(self._groups):
            group = self._groups[group_id]
            if group.timer is not None:
                group.timer.cancel()
            self._start_flush(group_id)
        if self._flush_tasks:
            await asyncio.gather(*self._flush_tasks, return_exceptions=True)
        logger.info("Media group aggregator drained")
