"""
Comment API Client
==================

Thin async wrapper over the NetEase Cloud Music API proxy.

One ``httpx.AsyncClient`` (and its connection pool) is shared by every walker;
size ``max_connections`` to the concurrency cap. Failures are translated into
the harvester's error taxonomy:

- ``httpx.HTTPError`` (network, timeout, 4xx/5xx)  -> TransportError
- body is not JSON / not the expected shape         -> DecodeError
- JSON ``code`` other than 200                      -> ApiError
"""

import asyncio
import functools
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from .exceptions import ApiError, DecodeError, FetchError, SetupError, TransportError
from .models import Comment, CommentUser, Page, Song

logger = logging.getLogger(__name__)

API_BASE_URL = "https://netease-delta-ten.vercel.app"

FetchPage = Callable[[int, int, int], Awaitable[Page]]


def parse_comment(raw: Dict[str, Any]) -> Comment:
    """
    Build a Comment from one entry of the ``comments`` array.
    
    Raises:
        DecodeError: If a required field is missing or has the wrong type
    """
    try:
        user = raw["user"]
        ip_location = raw.get("ipLocation") or {}
        return Comment(
            comment_id=int(raw["commentId"]),
            user=CommentUser(
                user_id=int(user["userId"]),
                nickname=user.get("nickname") or "",
                avatar_url=user.get("avatarUrl") or "",
            ),
            content=raw.get("content") or "",
            time=int(raw["time"]),
            liked_count=int(raw.get("likedCount") or 0),
            parent_comment_id=raw.get("parentCommentId") or None,
            ip_location=ip_location.get("location") or None,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise DecodeError(f"Malformed comment entry: {e!r}") from e


class CommentClient:
    """
    Async client for the comment and listening-record endpoints.
    
    Args:
        base_url: API root (default: the public proxy)
        cookie: Login cookie sent with every request (None = anonymous)
        timeout: Per-request timeout in seconds
        max_connections: Connection pool size
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
    
    Example:
        ```python
        async with CommentClient(cookie=load_cookie("login_info.json")) as client:
            songs = await client.fetch_listening_record(uid)
            page = await client.fetch_comments(songs[0].id, limit=100, offset=0)
        ```
    """
    
    def __init__(
        self,
        base_url: str = API_BASE_URL,
        cookie: Optional[str] = None,
        timeout: float = 30.0,
        max_connections: int = 50,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.cookie = cookie
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            limits=httpx.Limits(max_connections=max_connections),
            transport=transport,
        )
    
    async def __aenter__(self) -> "CommentClient":
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
    
    async def aclose(self) -> None:
        await self._client.aclose()
    
    async def _get_json(
        self,
        path: str,
        params: Dict[str, Any],
        song_id: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Dict[str, Any]:
        headers = {"Cookie": self.cookie} if self.cookie else {}
        try:
            response = await self._client.get(path, params=params, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(
                f"GET {path} failed: {e!r}", song_id=song_id, offset=offset
            ) from e
        
        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(
                f"GET {path} returned invalid JSON", song_id=song_id, offset=offset
            ) from e
        
        if not isinstance(data, dict):
            raise DecodeError(
                f"GET {path} returned {type(data).__name__}, expected object",
                song_id=song_id,
                offset=offset,
            )
        
        code = data.get("code")
        if code != 200:
            raise ApiError(
                f"GET {path} returned code {code}",
                code=code,
                song_id=song_id,
                offset=offset,
            )
        return data
    
    async def fetch_comments(self, song_id: int, limit: int, offset: int) -> Page:
        """
        Fetch one page of a song's comments.
        
        Raises:
            FetchError: TransportError, DecodeError or ApiError
        """
        data = await self._get_json(
            "/comment/music",
            {"id": song_id, "limit": limit, "offset": offset},
            song_id=song_id,
            offset=offset,
        )
        raw_comments = data.get("comments")
        if not isinstance(raw_comments, list):
            raise DecodeError(
                "Response has no 'comments' array", song_id=song_id, offset=offset
            )
        
        try:
            comments = tuple(parse_comment(raw) for raw in raw_comments)
        except DecodeError as e:
            e.song_id, e.offset = song_id, offset
            raise
        
        total = data.get("total")
        more = data.get("more")
        return Page(
            comments=comments,
            total=total if isinstance(total, int) else None,
            has_more=more if isinstance(more, bool) else None,
        )
    
    async def fetch_listening_record(self, uid: int, record_type: int = 0) -> List[Song]:
        """
        Fetch a user's listening ranking as Songs.
        
        Args:
            uid: User id
            record_type: 0 = all time (``allData``), 1 = last week (``weekData``)
        """
        data = await self._get_json("/user/record", {"uid": uid, "type": record_type})
        key = "allData" if record_type == 0 else "weekData"
        entries = data.get(key)
        if not isinstance(entries, list):
            raise DecodeError(f"Response has no '{key}' array")
        
        try:
            return [
                Song(
                    id=int(entry["song"]["id"]),
                    name=entry["song"].get("name") or "",
                    score=entry.get("score"),
                )
                for entry in entries
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DecodeError(f"Malformed listening record entry: {e!r}") from e
    
    def __repr__(self) -> str:
        return f"CommentClient(base_url={self.base_url!r}, logged_in={self.cookie is not None})"


def load_cookie(path: Union[str, Path]) -> str:
    """
    Read the login cookie from a saved ``login_info.json``.
    
    Raises:
        SetupError: If the file is missing, unreadable or has no cookie
    """
    path = Path(path)
    try:
        info = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise SetupError(f"Cannot read login info from {path}: {e}") from e
    
    cookie = info.get("cookie") if isinstance(info, dict) else None
    if not cookie:
        raise SetupError(f"No cookie found in {path}")
    return cookie


def with_retry(
    fetch_page: FetchPage,
    attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> FetchPage:
    """
    Wrap a page fetcher with exponential-backoff retries on FetchError.
    
    The walker itself never retries; this is the place to opt in.
    
    Example:
        ```python
        walker = PaginationWalker(
            fetch_page=with_retry(client.fetch_comments, attempts=3),
            target_user_id=uid,
        )
        ```
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    
    @functools.wraps(fetch_page)
    async def wrapper(song_id: int, limit: int, offset: int) -> Page:
        for attempt in range(1, attempts + 1):
            try:
                return await fetch_page(song_id, limit, offset)
            except FetchError as e:
                if attempt == attempts:
                    raise
                delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                logger.warning(
                    "Fetching song %s offset %s failed (attempt %d/%d): %r. Retrying in %.1fs",
                    song_id, offset, attempt, attempts, e, delay,
                )
                await asyncio.sleep(delay)
    
    return wrapper
