"""
Pytest configuration and fixtures for pocketflow_comments tests.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pytest

from pocketflow_comments import (
    Comment,
    CommentUser,
    Page,
    ProgressTracker,
    SetupError,
    SinkError,
    Song,
    TransportError,
)


TARGET_UID = 42
OTHER_UID = 7


def make_comment(comment_id: int, user_id: int = OTHER_UID, content: str = "nice") -> Comment:
    return Comment(
        comment_id=comment_id,
        user=CommentUser(user_id=user_id, nickname=f"user{user_id}"),
        content=content,
        time=1700000000000 + comment_id,
        liked_count=comment_id % 3,
    )


def make_page(count: int, matching: Iterable[int] = (), start_id: int = 0) -> Page:
    """A page of ``count`` comments; positions in ``matching`` belong to TARGET_UID."""
    matching = set(matching)
    return Page(
        comments=tuple(
            make_comment(start_id + i, TARGET_UID if i in matching else OTHER_UID)
            for i in range(count)
        ),
        total=None,
    )


class FakeCommentAPI:
    """
    Scripted page fetcher.
    
    Serves ``pages[song_id][offset // limit]`` and an empty page past the end.
    Songs in ``failing`` raise TransportError on every call; songs in
    ``failing_at`` raise at the listed offsets; songs in ``crashing`` raise a
    plain ValueError. Songs in ``endless`` always return full pages.
    """
    
    def __init__(
        self,
        pages: Optional[Dict[int, List[Page]]] = None,
        *,
        failing: Iterable[int] = (),
        failing_at: Optional[Dict[int, Set[int]]] = None,
        crashing: Iterable[int] = (),
        endless: Iterable[int] = (),
        delay: float = 0.0,
    ):
        self.pages = pages or {}
        self.failing = set(failing)
        self.failing_at = failing_at or {}
        self.crashing = set(crashing)
        self.endless = set(endless)
        self.delay = delay
        self.calls: List[Tuple[int, int, int]] = []
        self.max_active_songs = 0
        self._songs_in_flight: Set[int] = set()
    
    async def fetch_page(self, song_id: int, limit: int, offset: int) -> Page:
        self.calls.append((song_id, limit, offset))
        self._songs_in_flight.add(song_id)
        self.max_active_songs = max(self.max_active_songs, len(self._songs_in_flight))
        try:
            await asyncio.sleep(self.delay)
        finally:
            self._songs_in_flight.discard(song_id)
        
        if song_id in self.crashing:
            raise ValueError(f"bug while fetching {song_id}")
        if song_id in self.failing or offset in self.failing_at.get(song_id, ()):
            raise TransportError("connection reset", song_id=song_id, offset=offset)
        if song_id in self.endless:
            return make_page(limit, matching=[0], start_id=offset)
        
        song_pages = self.pages.get(song_id, [])
        index = offset // limit
        if index < len(song_pages):
            return song_pages[index]
        return Page()
    
    def offsets_for(self, song_id: int) -> List[int]:
        return [offset for sid, _, offset in self.calls if sid == song_id]
    
    def call_order(self) -> List[int]:
        return [sid for sid, _, _ in self.calls]


class RecordingSink:
    """In-memory sink that records every flush."""
    
    def __init__(self, fail_on: Iterable[int] = (), fail_prepare: bool = False):
        self.fail_on = set(fail_on)
        self.fail_prepare = fail_prepare
        self.prepared = 0
        self.flushes: List[Tuple[int, List[Comment]]] = []
    
    def prepare(self) -> None:
        self.prepared += 1
        if self.fail_prepare:
            raise SetupError("storage root is read-only")
    
    def flush(self, song: Song, comments: Sequence[Comment]) -> None:
        if song.id in self.fail_on:
            raise SinkError(f"disk full while writing {song.id}")
        self.flushes.append((song.id, list(comments)))
    
    @property
    def flushed_ids(self) -> List[int]:
        return [song_id for song_id, _ in self.flushes]


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def progress():
    """Progress tracker with the tqdm display turned off."""
    tracker = ProgressTracker(disable=True)
    yield tracker
    tracker.close()


@pytest.fixture
def songs():
    """A handful of songs for batch tests."""
    return [Song(id=i, name=f"Song {i}") for i in range(1, 6)]
