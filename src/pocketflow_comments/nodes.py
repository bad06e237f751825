"""
Pagination Walker Node
======================

A PocketFlow AsyncNode that drains one song's comment thread page by page,
keeps the target user's comments, and hands them to the sink when done.

The node is meant to be the start node of a CommentHarvestFlow, which runs one
copy of it per song with ``params = {"song": Song, "index": int, "total": int}``.
"""

import logging
from typing import Any, Dict, Optional

from pocketflow import AsyncNode

from .client import FetchPage
from .exceptions import FetchError, SinkError
from .models import ItemResult, Song
from .presets import HarvestConfig
from .progress import ItemProgress, ProgressTracker
from .rate_limiter import Throttle

logger = logging.getLogger(__name__)


class PaginationWalker(AsyncNode):
    """
    Walks every comment page of one song in strictly increasing offset order.
    
    Configuration can be set via class attributes (for subclasses),
    constructor keyword arguments, or ``from_config()``.
    
    Class Attributes:
        page_size (int): Comments per request (default: 100)
        max_offset (int): No request at or beyond this offset (default: 10000)
        request_delay (float): Seconds between this walker's requests (default: 0.05)
        progress_step (int): Per-song bar step, in pages (default: 5)
        confirm_exhaustion (bool): Only stop on an empty page (default: False)
    
    Shared store (read):
        shared["sink"]: CommentSink or None
        shared["progress"]: ProgressTracker or None
    
    Shared store (written):
        shared["results"][song.id]: ItemResult
    
    Example:
        ```python
        walker = PaginationWalker(client.fetch_comments, target_user_id=uid)
        walker.set_params({"song": Song(id=186016, name="晴天")})
        shared = {"sink": JsonDirectorySink("comments")}
        await walker.run_async(shared)
        print(shared["results"][186016].comments)
        ```
    
    Behavior:
        - A page with fewer than ``page_size`` comments ends the walk
        - A FetchError ends the walk; comments gathered so far are still flushed
        - Nothing is retried here; wrap ``fetch_page`` with ``with_retry`` for that
        - Cancellation skips the flush entirely
    """
    
    page_size: int = 100
    max_offset: int = 10000
    request_delay: float = 0.05
    progress_step: int = 5
    confirm_exhaustion: bool = False
    
    def __init__(
        self,
        fetch_page: FetchPage,
        target_user_id: int,
        *,
        page_size: Optional[int] = None,
        max_offset: Optional[int] = None,
        request_delay: Optional[float] = None,
        progress_step: Optional[int] = None,
        confirm_exhaustion: Optional[bool] = None,
    ):
        # One attempt only: fetch errors are handled inside exec_async.
        super().__init__(max_retries=1, wait=0)
        
        self.fetch_page = fetch_page
        self.target_user_id = target_user_id
        
        if page_size is not None:
            self.page_size = page_size
        if max_offset is not None:
            self.max_offset = max_offset
        if request_delay is not None:
            self.request_delay = request_delay
        if progress_step is not None:
            self.progress_step = progress_step
        if confirm_exhaustion is not None:
            self.confirm_exhaustion = confirm_exhaustion
        
        self._shared: Optional[Dict[str, Any]] = None
    
    @classmethod
    def from_config(
        cls,
        fetch_page: FetchPage,
        target_user_id: int,
        config: HarvestConfig,
    ) -> "PaginationWalker":
        return cls(
            fetch_page,
            target_user_id,
            page_size=config.page_size,
            max_offset=config.max_offset,
            request_delay=config.request_delay,
            progress_step=config.progress_step,
            confirm_exhaustion=config.confirm_exhaustion,
        )
    
    @property
    def estimated_pages(self) -> int:
        return -(-self.max_offset // self.page_size)
    
    async def prep_async(self, shared: Dict[str, Any]):
        song: Song = self.params["song"]
        self._shared = shared
        progress: Optional[ProgressTracker] = shared.get("progress")
        
        handle = None
        if progress is not None:
            index = self.params.get("index", 0)
            total = self.params.get("total", 1)
            handle = progress.new_item(f"song {index + 1}/{total}", self.estimated_pages)
        return song, progress, handle
    
    async def exec_async(self, prep_res) -> ItemResult:
        song, progress, handle = prep_res
        return await self.walk(song, progress, handle)
    
    async def walk(
        self,
        song: Song,
        progress: Optional[ProgressTracker] = None,
        handle: Optional[ItemProgress] = None,
    ) -> ItemResult:
        """
        Fetch pages until exhaustion, hard stop or error.
        
        Returns:
            ItemResult with the matching comments in page order
        """
        result = ItemResult(song=song)
        throttle = Throttle(self.request_delay)
        offset = 0
        page_index = 0
        
        while offset < self.max_offset:
            await throttle.wait()
            result.offsets.append(offset)
            try:
                page = await self.fetch_page(song.id, self.page_size, offset)
            except FetchError as e:
                logger.warning(
                    "Fetching comments of song %s (%s) at offset %d failed: %r",
                    song.id, song.name, offset, e,
                )
                result.error = e
                result.stop_reason = "error"
                break
            
            result.comments.extend(
                c for c in page.comments if c.author_id == self.target_user_id
            )
            logger.debug(
                "Song %s offset %d: %d comments, %d matched so far",
                song.id, offset, page.raw_count, len(result.comments),
            )
            
            if progress is not None and handle is not None and page_index % self.progress_step == 0:
                progress.inc_item(handle, self.progress_step)
            page_index += 1
            
            if page.raw_count < self.page_size:
                if not self.confirm_exhaustion or page.raw_count == 0:
                    result.stop_reason = "exhausted"
                    break
            offset += self.page_size
        else:
            result.stop_reason = "max_offset"
        
        return result
    
    async def exec_fallback_async(self, prep_res, exc: Exception) -> ItemResult:
        """Close the song's bar and record it as failed before re-raising."""
        song, progress, handle = prep_res
        if progress is not None and handle is not None:
            progress.finish_item(handle, f"song {song.label} failed")
        self._record(self._shared, ItemResult(song=song, error=exc, stop_reason="failed"))
        raise exc
    
    async def post_async(self, shared: Dict[str, Any], prep_res, exec_res: ItemResult) -> str:
        song, progress, handle = prep_res
        sink = shared.get("sink")
        
        try:
            if exec_res.comments and sink is not None:
                try:
                    sink.flush(song, list(exec_res.comments))
                    exec_res.flushed = True
                except SinkError as e:
                    logger.warning("Saving comments of song %s (%s) failed: %s", song.id, song.name, e)
        finally:
            if progress is not None and handle is not None:
                progress.finish_item(handle, f"song {song.label} done")
            self._record(shared, exec_res)
        return "default"
    
    @staticmethod
    def _record(shared: Optional[Dict[str, Any]], result: ItemResult) -> None:
        if shared is not None:
            shared.setdefault("results", {})[result.song.id] = result
