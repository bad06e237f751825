"""
Tests for CommentHarvestFlow
============================

Dispatching songs to walkers behind the concurrency cap.
"""

import asyncio
import logging
import random
import pytest

from pocketflow_comments import (
    CommentHarvestFlow,
    HarvestConfig,
    PaginationWalker,
    ProgressTracker,
    SetupError,
    Song,
    harvest,
)

from conftest import TARGET_UID, FakeCommentAPI, RecordingSink, make_page


def make_flow(api, sink=None, progress=None, cap=50, **walker_kwargs):
    walker_kwargs.setdefault("request_delay", 0)
    walker = PaginationWalker(api.fetch_page, TARGET_UID, **walker_kwargs)
    return CommentHarvestFlow(
        start=walker,
        sink=sink,
        progress=progress or ProgressTracker(disable=True),
        max_concurrent_items=cap,
    )


class RecordingProgress(ProgressTracker):
    """Tracker that remembers every value of the overall counter."""
    
    def __init__(self):
        super().__init__(disable=True)
        self.history = []
    
    def inc_overall(self) -> bool:
        changed = super().inc_overall()
        self.history.append(self.overall_completed)
        return changed


# =============================================================================
# Basic dispatch
# =============================================================================

class TestCommentHarvestFlowBasic:
    """Every song is attempted once and accounted for."""
    
    @pytest.mark.asyncio
    async def test_all_songs_walked(self, songs, sink):
        api = FakeCommentAPI({s.id: [make_page(5, matching=[0])] for s in songs})
        flow = make_flow(api, sink)
        shared = {"songs": songs}
        
        await flow.run_async(shared)
        
        assert sorted(set(api.call_order())) == [s.id for s in songs]
        assert sorted(shared["results"]) == [s.id for s in songs]
        assert sorted(sink.flushed_ids) == [s.id for s in songs]
        assert flow.stats["completed_items"] == len(songs)
        assert flow.stats["failed_items"] == 0
        assert flow.stats["flushed_items"] == len(songs)
        assert flow.stats["matched_comments"] == len(songs)
        assert shared["stats"] == flow.stats
    
    @pytest.mark.asyncio
    async def test_empty_song_list(self, sink):
        api = FakeCommentAPI()
        flow = make_flow(api, sink)
        shared = {"songs": []}
        
        await flow.run_async(shared)
        
        assert api.calls == []
        assert shared["results"] == {}
        assert flow.stats["completed_items"] == 0
    
    @pytest.mark.asyncio
    async def test_constructor_kwargs(self):
        flow = make_flow(FakeCommentAPI(), cap=7)
        assert flow.max_concurrent_items == 7
        assert flow.gate.max_concurrent == 7
        assert CommentHarvestFlow.max_concurrent_items == 50
    
    @pytest.mark.asyncio
    async def test_reset_stats(self, songs):
        api = FakeCommentAPI({s.id: [make_page(1, matching=[0])] for s in songs})
        flow = make_flow(api)
        
        await flow.run_async({"songs": songs})
        assert flow.stats["completed_items"] == len(songs)
        
        flow.reset_stats()
        assert flow.stats["completed_items"] == 0
        assert flow.stats["matched_comments"] == 0
        
        await flow.run_async({"songs": songs})
        assert flow.stats["completed_items"] == len(songs)


# =============================================================================
# Concurrency cap
# =============================================================================

class TestConcurrencyCap:
    """The number of songs in flight never exceeds the cap."""
    
    @pytest.mark.asyncio
    async def test_two_songs_cap_one(self, sink):
        """B starts only after A has finished and released its slot."""
        a, b = Song(id=1, name="A"), Song(id=2, name="B")
        api = FakeCommentAPI({
            a.id: [make_page(100), make_page(40, matching=[3, 17], start_id=100)],
            b.id: [make_page(10, matching=[0], start_id=500)],
        }, delay=0.01)
        flow = make_flow(api, sink, cap=1)
        shared = {"songs": [a, b]}
        
        await flow.run_async(shared)
        
        assert api.call_order() == [a.id, a.id, b.id]
        assert api.offsets_for(a.id) == [0, 100]
        assert len(shared["results"][a.id].comments) == 2
        assert flow.stats["peak_concurrent_items"] == 1
        assert sink.flushed_ids == [a.id, b.id]
    
    @pytest.mark.asyncio
    async def test_two_hundred_songs_cap_fifty(self):
        """Active songs stay within 50; completions climb one by one to 200."""
        songs = [Song(id=i) for i in range(200)]
        pages = {s.id: [make_page(100), make_page(random.randint(0, 99))] for s in songs}
        api = FakeCommentAPI(pages, delay=0.005)
        progress = RecordingProgress()
        flow = make_flow(api, progress=progress, cap=50)
        
        samples = []
        
        async def sampler():
            while True:
                samples.append(flow.gate.active)
                await asyncio.sleep(0.001)
        
        sampling = asyncio.create_task(sampler())
        try:
            await flow.run_async({"songs": songs})
        finally:
            sampling.cancel()
        
        assert max(samples) <= 50
        assert api.max_active_songs <= 50
        assert flow.stats["peak_concurrent_items"] == 50
        assert progress.history == list(range(1, 201))
        assert progress.overall_completed == 200
    
    @pytest.mark.asyncio
    async def test_cap_above_song_count(self, songs):
        api = FakeCommentAPI({s.id: [make_page(1)] for s in songs}, delay=0.01)
        flow = make_flow(api, cap=100)
        
        await flow.run_async({"songs": songs})
        
        assert flow.stats["peak_concurrent_items"] == len(songs)


# =============================================================================
# Failure isolation
# =============================================================================

class TestFailureIsolation:
    """One song's failure never aborts the batch."""
    
    @pytest.mark.asyncio
    async def test_failing_song_still_counted(self, songs, sink):
        bad = songs[2]
        api = FakeCommentAPI({s.id: [make_page(2, matching=[0])] for s in songs}, failing=[bad.id])
        progress = RecordingProgress()
        flow = make_flow(api, sink, progress=progress)
        shared = {"songs": songs}
        
        await flow.run_async(shared)
        
        assert bad.id not in sink.flushed_ids
        assert len(sink.flushes) == len(songs) - 1
        assert progress.overall_completed == len(songs)
        assert shared["results"][bad.id].stop_reason == "error"
        assert flow.stats["partial_items"] == 1
    
    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self, songs, sink, caplog):
        bad = songs[0]
        api = FakeCommentAPI({s.id: [make_page(2, matching=[0])] for s in songs}, crashing=[bad.id])
        progress = RecordingProgress()
        shared = {"songs": songs}
        flow = make_flow(api, sink, progress=progress)
        
        with caplog.at_level(logging.ERROR):
            await flow.run_async(shared)
        
        assert flow.stats["failed_items"] == 1
        assert flow.stats["completed_items"] == len(songs) - 1
        assert progress.overall_completed == len(songs)
        assert bad.id not in sink.flushed_ids
        assert "Walking song" in caplog.text
        assert shared["results"][bad.id].stop_reason == "failed"
        assert flow.stats["partial_items"] == 0
        assert progress.active_items == 0
    
    @pytest.mark.asyncio
    async def test_setup_error_aborts_before_any_fetch(self, songs):
        sink = RecordingSink(fail_prepare=True)
        api = FakeCommentAPI({s.id: [make_page(1)] for s in songs})
        flow = make_flow(api, sink)
        
        with pytest.raises(SetupError):
            await flow.run_async({"songs": songs})
        
        assert sink.prepared == 1
        assert api.calls == []
    
    @pytest.mark.asyncio
    async def test_each_song_flushed_at_most_once(self, sink):
        songs = [Song(id=i) for i in range(30)]
        api = FakeCommentAPI(
            {s.id: [make_page(100, matching=[0]), make_page(3, matching=[1])] for s in songs},
            failing_at={3: {100}, 4: {0}},
        )
        flow = make_flow(api, sink, cap=8)
        
        await flow.run_async({"songs": songs})
        
        assert len(sink.flushed_ids) == len(set(sink.flushed_ids))
        assert 4 not in sink.flushed_ids
        assert 3 in sink.flushed_ids
    
    @pytest.mark.asyncio
    async def test_duplicate_song_ids_walked_once(self, songs, sink, caplog):
        api = FakeCommentAPI({s.id: [make_page(2, matching=[0])] for s in songs})
        progress = RecordingProgress()
        flow = make_flow(api, sink, progress=progress)
        
        with caplog.at_level(logging.WARNING):
            await flow.run_async({"songs": songs + [songs[1], songs[3]]})
        
        assert sorted(sink.flushed_ids) == sorted(s.id for s in songs)
        assert api.call_order().count(songs[1].id) == 1
        assert progress.overall_total == len(songs)
        assert progress.overall_completed == len(songs)
        assert "duplicate song" in caplog.text


# =============================================================================
# Cancellation
# =============================================================================

class TestCancellation:
    """Cancelling the run stops every walker and writes nothing unfinished."""
    
    @pytest.mark.asyncio
    async def test_cancel_mid_run(self, sink):
        quick = Song(id=1, name="quick")
        slow = [Song(id=i, name=f"slow {i}") for i in range(2, 6)]
        api = FakeCommentAPI(
            {quick.id: [make_page(3, matching=[0])]},
            endless=[s.id for s in slow],
            delay=0.02,
        )
        progress = ProgressTracker(disable=True)
        flow = make_flow(api, sink, progress=progress, cap=10)
        
        task = asyncio.create_task(flow.run_async({"songs": [quick] + slow}))
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        
        assert sink.flushed_ids == [quick.id]
        assert flow.gate.active == 0
        assert progress.active_items == 0
        
        calls_at_cancel = len(api.calls)
        await asyncio.sleep(0.1)
        assert len(api.calls) == calls_at_cancel
    
    @pytest.mark.asyncio
    async def test_cancel_while_queued(self, sink):
        """Songs waiting for a slot are never started after cancellation."""
        songs = [Song(id=i) for i in range(1, 6)]
        api = FakeCommentAPI(endless=[s.id for s in songs], delay=0.02)
        flow = make_flow(api, sink, cap=1)
        
        task = asyncio.create_task(flow.run_async({"songs": songs}))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        
        assert set(api.call_order()) == {1}
        assert sink.flushes == []


# =============================================================================
# Determinism and the harvest() helper
# =============================================================================

class TestHarvest:
    """harvest() wiring and per-song determinism."""
    
    @pytest.mark.asyncio
    async def test_results_independent_of_concurrency(self):
        songs = [Song(id=i) for i in range(20)]
        rng = random.Random(1234)
        pages = {
            s.id: [
                make_page(100, matching=rng.sample(range(100), 3), start_id=1000 * s.id),
                make_page(100, matching=rng.sample(range(100), 2), start_id=1000 * s.id + 100),
                make_page(rng.randint(0, 99), matching=[0], start_id=1000 * s.id + 200),
            ]
            for s in songs
        }
        
        outcomes = []
        for cap in (1, 5, 50):
            api = FakeCommentAPI(pages, delay=0.001)
            config = HarvestConfig(request_delay=0, max_concurrent_items=cap)
            results = await harvest(
                songs, api.fetch_page, TARGET_UID,
                config=config, progress=ProgressTracker(disable=True),
            )
            outcomes.append({sid: [c.comment_id for c in r.comments] for sid, r in results.items()})
        
        assert outcomes[0] == outcomes[1] == outcomes[2]
    
    @pytest.mark.asyncio
    async def test_harvest_uses_config(self, sink):
        song = Song(id=9)
        api = FakeCommentAPI(endless=[song.id])
        config = HarvestConfig(page_size=20, max_offset=100, request_delay=0)
        
        results = await harvest(
            [song], api.fetch_page, TARGET_UID, sink,
            config=config, progress=ProgressTracker(disable=True),
        )
        
        assert api.offsets_for(song.id) == [0, 20, 40, 60, 80]
        assert all(limit == 20 for _, limit, _ in api.calls)
        assert results[song.id].stop_reason == "max_offset"
        assert sink.flushed_ids == [song.id]
        assert sink.prepared == 1
