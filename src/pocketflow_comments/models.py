"""
Data Models
===========

Immutable records exchanged between the fetcher, the walker and the sink.

Optional fields the remote API may leave out are modelled explicitly with
``None`` defaults rather than carried around as raw JSON.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Song:
    """
    One unit of work: a song whose comment thread gets walked.
    
    Attributes:
        id: Remote song id
        name: Display name
        score: Listening-record score, if the song came from a user record
    """
    id: int
    name: str = ""
    score: Optional[int] = None
    
    @property
    def label(self) -> str:
        return self.name or str(self.id)


@dataclass(frozen=True)
class CommentUser:
    """Author of a comment."""
    user_id: int
    nickname: str = ""
    avatar_url: str = ""


@dataclass(frozen=True)
class Comment:
    """
    A single comment as returned by the comment endpoint.
    
    Attributes:
        comment_id: Remote comment id
        user: The comment's author
        content: Comment text
        time: Creation time in epoch milliseconds
        liked_count: Number of likes
        parent_comment_id: Id of the replied-to comment, None for top level
        ip_location: Location label shown by the API, None when absent
    """
    comment_id: int
    user: CommentUser
    content: str
    time: int
    liked_count: int = 0
    parent_comment_id: Optional[int] = None
    ip_location: Optional[str] = None
    
    @property
    def author_id(self) -> int:
        return self.user.user_id
    
    @property
    def time_str(self) -> str:
        """Creation date as ``YYYY-MM-DD`` in local time."""
        return datetime.fromtimestamp(self.time / 1000).strftime("%Y-%m-%d")
    
    def to_dict(self) -> Dict[str, Any]:
        """Serializable form written by sinks."""
        return {
            "comment_id": self.comment_id,
            "user": {
                "user_id": self.user.user_id,
                "nickname": self.user.nickname,
                "avatar_url": self.user.avatar_url,
            },
            "content": self.content,
            "time": self.time,
            "time_str": self.time_str,
            "liked_count": self.liked_count,
            "parent_comment_id": self.parent_comment_id,
            "ip_location": self.ip_location,
        }


@dataclass(frozen=True)
class Page:
    """
    One fetch response for a song at a given offset.
    
    ``raw_count`` is the number of comments the server returned before any
    filtering; it alone decides whether the walk continues.
    """
    comments: Tuple[Comment, ...] = ()
    total: Optional[int] = None
    has_more: Optional[bool] = None
    
    @property
    def raw_count(self) -> int:
        return len(self.comments)


@dataclass
class ItemResult:
    """
    Accumulated outcome of walking one song.
    
    Attributes:
        song: The walked song
        comments: Comments by the target user, in page order
        offsets: Offsets requested, in request order
        error: The error that ended the walk, if any
        stop_reason: "exhausted", "max_offset", "error" (fetch failed) or
            "failed" (the walker itself raised)
        flushed: Whether the sink accepted the comments
    """
    song: Song
    comments: List[Comment] = field(default_factory=list)
    offsets: List[int] = field(default_factory=list)
    error: Optional[Exception] = None
    stop_reason: Optional[str] = None
    flushed: bool = False
    
    @property
    def pages_fetched(self) -> int:
        """Pages successfully fetched (a failed request is not counted)."""
        return len(self.offsets) - (1 if self.partial else 0)
    
    @property
    def partial(self) -> bool:
        return self.stop_reason == "error"
    
    def summary(self) -> Dict[str, Any]:
        return {
            "song_id": self.song.id,
            "song_name": self.song.name,
            "matched": len(self.comments),
            "pages_fetched": self.pages_fetched,
            "stop_reason": self.stop_reason,
            "error": repr(self.error) if self.error is not None else None,
            "flushed": self.flushed,
        }
