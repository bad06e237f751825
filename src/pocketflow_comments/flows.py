"""
Comment Harvest Flow
====================

Fans a list of songs out to PaginationWalker instances, at most
``max_concurrent_items`` at a time.

Classes:
    - CommentHarvestFlow: bounded parallel batch flow over songs

Functions:
    - harvest: build the walker + flow graph and run it
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from pocketflow import AsyncParallelBatchFlow

from .client import FetchPage
from .models import ItemResult, Song
from .nodes import PaginationWalker
from .presets import HarvestConfig
from .progress import ProgressTracker
from .rate_limiter import ConcurrencyGate
from .sink import CommentSink

logger = logging.getLogger(__name__)


class CommentHarvestFlow(AsyncParallelBatchFlow):
    """
    AsyncParallelBatchFlow that walks many songs with a concurrency cap.
    
    Each song runs the whole node graph (normally a single PaginationWalker)
    with ``params = {"song": ..., "index": ..., "total": ...}``. One song's
    failure is logged and counted; it never aborts the batch.
    
    Class Attributes:
        max_concurrent_items (int): Songs walked simultaneously (default: 50)
    
    Shared store:
        shared["songs"]: list of Song to walk (input)
        shared["results"]: dict of song id -> ItemResult (output)
        shared["stats"]: copy of ``flow.stats`` after the run (output)
    
    Example:
        ```python
        walker = PaginationWalker(client.fetch_comments, target_user_id=uid)
        flow = CommentHarvestFlow(
            start=walker,
            sink=JsonDirectorySink("comments"),
            max_concurrent_items=50,
        )
        shared = {"songs": songs}
        await flow.run_async(shared)
        print(flow.stats)
        ```
    
    Guarantees:
        - ``sink.prepare()`` runs before any song; a SetupError aborts the run
        - Every distinct song id is attempted exactly once (duplicates are skipped)
        - The overall counter moves once per song that reaches a terminal state
        - ``run_async`` returns only when every walker has finished
        - Cancelling the run cancels all walkers; unfinished songs are not flushed
    """
    
    max_concurrent_items: int = 50
    
    def __init__(
        self,
        start=None,
        *,
        sink: Optional[CommentSink] = None,
        progress: Optional[ProgressTracker] = None,
        max_concurrent_items: Optional[int] = None,
    ):
        super().__init__(start=start)
        
        if max_concurrent_items is not None:
            self.max_concurrent_items = max_concurrent_items
        
        self.sink = sink
        self.progress = progress if progress is not None else ProgressTracker()
        
        self._gate: Optional[ConcurrencyGate] = None
        self._completed_items: int = 0
        self._failed_items: int = 0
        self._results: Dict[int, ItemResult] = {}
        self._peak_concurrent_items: int = 0
    
    @property
    def gate(self) -> ConcurrencyGate:
        """
        Lazy-initialized admission gate.
        
        Created on first access so ``max_concurrent_items`` can still be
        changed after instantiation.
        """
        if self._gate is None:
            self._gate = ConcurrencyGate(max_concurrent=self.max_concurrent_items)
        return self._gate
    
    def reset_stats(self) -> None:
        """Drop the gate and clear all statistics."""
        self._gate = None
        self._completed_items = 0
        self._failed_items = 0
        self._results = {}
        self._peak_concurrent_items = 0
    
    @property
    def stats(self) -> Dict[str, Any]:
        """
        Execution statistics of the last run.
        
        Returns:
            Dict containing:
            - max_concurrent_items: Configured cap
            - completed_items: Songs whose walker finished (including partial walks)
            - failed_items: Songs whose walker raised unexpectedly
            - partial_items: Songs whose walk was cut short by a fetch error
            - flushed_items: Songs handed to the sink successfully
            - matched_comments: Total comments kept across songs
            - peak_concurrent_items: Most songs walked at the same time
        """
        results = self._results.values()
        return {
            "max_concurrent_items": self.max_concurrent_items,
            "completed_items": self._completed_items,
            "failed_items": self._failed_items,
            "partial_items": sum(1 for r in results if r.partial),
            "flushed_items": sum(1 for r in results if r.flushed),
            "matched_comments": sum(len(r.comments) for r in results),
            "peak_concurrent_items": self._peak_concurrent_items,
        }
    
    async def prep_async(self, shared: Dict[str, Any]) -> List[Dict[str, Any]]:
        songs: List[Song] = []
        seen = set()
        for song in shared.get("songs") or []:
            if song.id in seen:
                logger.warning("Skipping duplicate song %s (%s)", song.id, song.name)
                continue
            seen.add(song.id)
            songs.append(song)
        return [
            {"song": song, "index": i, "total": len(songs)}
            for i, song in enumerate(songs)
        ]
    
    async def _run_async(self, shared: Dict[str, Any]) -> Any:
        """
        Run one walker per song behind the admission gate.
        
        Overrides the parent to add setup, gating, progress and failure
        isolation around each flow instance.
        """
        pr = await self.prep_async(shared) or []
        
        self._completed_items = 0
        self._failed_items = 0
        self._results = {}
        
        if self.sink is not None:
            self.sink.prepare()
        
        shared["sink"] = self.sink
        shared["progress"] = self.progress
        shared["results"] = self._results
        
        gate = self.gate
        gate.reset_peak()
        self.progress.new_overall(len(pr))
        logger.info(
            "Harvesting comments for %d songs, at most %d at a time",
            len(pr), self.max_concurrent_items,
        )
        
        async def run_gated(bp: Dict[str, Any]) -> None:
            """Walk a single song inside one gate slot."""
            song = bp["song"]
            async with gate:
                try:
                    await self._orch_async(shared, {**self.params, **bp})
                    self._completed_items += 1
                except Exception:
                    self._failed_items += 1
                    logger.exception("Walking song %s (%s) failed", song.id, song.name)
            self.progress.inc_overall()
        
        try:
            await asyncio.gather(*(run_gated(bp) for bp in pr))
        finally:
            self._peak_concurrent_items = gate.peak
            self.progress.close()
        
        logger.info(
            "Finished %d songs (%d failed), %d comments kept",
            self._completed_items + self._failed_items,
            self._failed_items,
            self.stats["matched_comments"],
        )
        return await self.post_async(shared, pr, None)
    
    async def post_async(self, shared: Dict[str, Any], prep_res, exec_res) -> str:
        shared["stats"] = self.stats
        return "default"


async def harvest(
    songs: Iterable[Song],
    fetch_page: FetchPage,
    target_user_id: int,
    sink: Optional[CommentSink] = None,
    *,
    config: Optional[HarvestConfig] = None,
    progress: Optional[ProgressTracker] = None,
) -> Dict[int, ItemResult]:
    """
    Walk every song and keep ``target_user_id``'s comments.
    
    Args:
        songs: Songs to walk
        fetch_page: ``async (song_id, limit, offset) -> Page``
        target_user_id: Author whose comments are kept
        sink: Where finished songs are written (None = keep in memory only)
        config: Pacing and pagination settings (default: HarvestConfig())
        progress: Progress display (default: a visible ProgressTracker)
    
    Returns:
        Dict of song id -> ItemResult
    
    Raises:
        SetupError: If the sink cannot be prepared
    """
    config = config or HarvestConfig()
    walker = PaginationWalker.from_config(fetch_page, target_user_id, config)
    flow = CommentHarvestFlow(
        start=walker,
        sink=sink,
        progress=progress,
        max_concurrent_items=config.max_concurrent_items,
    )
    shared: Dict[str, Any] = {"songs": list(songs)}
    await flow.run_async(shared)
    return shared["results"]
