"""
Exception Classes
=================

Error taxonomy for the comment harvester.

Fetch failures (transport, decode, remote API codes) end one song's walk but
never the run. Sink failures lose one song's output. Only setup failures are
fatal to the whole run.
"""

from typing import Optional


class HarvestError(Exception):
    """Base class for every error raised by pocketflow_comments."""


class FetchError(HarvestError):
    """
    Raised by a page fetcher when a page cannot be obtained.
    
    Attributes:
        song_id: Song whose comment page was requested (if known)
        offset: Offset of the failed request (if known)
    """
    
    def __init__(
        self,
        message: str = "Failed to fetch page",
        song_id: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        super().__init__(message)
        self.song_id = song_id
        self.offset = offset
    
    def __repr__(self) -> str:
        parts = [f"{type(self).__name__}({self.args[0]!r}"]
        if self.song_id is not None:
            parts.append(f", song_id={self.song_id}")
        if self.offset is not None:
            parts.append(f", offset={self.offset}")
        parts.append(")")
        return "".join(parts)


class TransportError(FetchError):
    """Network failure, timeout or non-2xx HTTP status."""


class DecodeError(FetchError):
    """The response body was not the JSON shape we expect."""


class ApiError(FetchError):
    """
    The remote API answered with a non-success ``code`` field.
    
    Attributes:
        code: The ``code`` value returned by the API
    """
    
    def __init__(
        self,
        message: str = "API returned an error code",
        code: Optional[int] = None,
        song_id: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        super().__init__(message, song_id=song_id, offset=offset)
        self.code = code


class SinkError(HarvestError):
    """A finished song's comments could not be persisted."""


class SetupError(HarvestError):
    """Shared state (e.g. the sink's storage root) could not be initialized."""
