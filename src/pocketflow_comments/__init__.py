"""
PocketFlow Comments - Bounded-Concurrency Comment Harvesting
============================================================

A PocketFlow extension that collects one user's comments from the comment
threads of many songs, walking every thread page by page while keeping the
remote API comfortable.

Features:
    - One PaginationWalker node per song, strictly increasing offsets
    - Global cap on songs walked at once (ConcurrencyGate, default 50)
    - Per-walker request pacing (Throttle, default 50ms)
    - Live two-level progress (overall songs + pages per song) via tqdm
    - Per-song failures are logged, never fatal; one JSON file per song

Quick Start:
    ```python
    from pocketflow_comments import (
        CommentClient, JsonDirectorySink, harvest, load_cookie,
    )
    
    async with CommentClient(cookie=load_cookie("login_info.json")) as client:
        songs = await client.fetch_listening_record(uid)
        results = await harvest(
            songs,
            client.fetch_comments,
            target_user_id=uid,
            sink=JsonDirectorySink("comments"),
        )
    ```

Classes:
    Throttle: Minimum delay between one walker's requests
    ConcurrencyGate: Bounded admission of concurrent songs
    PaginationWalker: AsyncNode that drains one song's comments
    CommentHarvestFlow: Parallel batch flow over songs with a concurrency cap
    ProgressTracker: Overall and per-song progress counters
    CommentClient: httpx client for the comment API
    JsonDirectorySink: One JSON file per song
    HarvestConfig / Presets: Pacing and pagination settings
"""

__version__ = "0.1.0"
__author__ = "Jason-AI-lab"

from .rate_limiter import Throttle, ConcurrencyGate
from .models import Song, CommentUser, Comment, Page, ItemResult
from .nodes import PaginationWalker
from .flows import CommentHarvestFlow, harvest
from .progress import ProgressTracker, ItemProgress
from .client import CommentClient, load_cookie, with_retry
from .sink import CommentSink, JsonDirectorySink
from .presets import HarvestConfig, Presets
from .exceptions import (
    HarvestError,
    FetchError,
    TransportError,
    DecodeError,
    ApiError,
    SinkError,
    SetupError,
)

__all__ = [
    # Version info
    "__version__",
    
    # Core classes
    "Throttle",
    "ConcurrencyGate",
    "PaginationWalker",
    "CommentHarvestFlow",
    "harvest",
    "ProgressTracker",
    "ItemProgress",
    
    # Collaborators
    "CommentClient",
    "load_cookie",
    "with_retry",
    "CommentSink",
    "JsonDirectorySink",
    
    # Data
    "Song",
    "CommentUser",
    "Comment",
    "Page",
    "ItemResult",
    
    # Configuration
    "HarvestConfig",
    "Presets",
    
    # Errors
    "HarvestError",
    "FetchError",
    "TransportError",
    "DecodeError",
    "ApiError",
    "SinkError",
    "SetupError",
]
