"""
Comment Sinks
=============

Persistence for finished songs. A sink is prepared once before a run and then
receives at most one ``flush`` per song, possibly from many walkers at once.
"""

import contextlib
import json
import logging
from pathlib import Path
from typing import Protocol, Sequence, Union

from .exceptions import SetupError, SinkError
from .models import Comment, Song

logger = logging.getLogger(__name__)


class CommentSink(Protocol):
    """What CommentHarvestFlow needs from a sink."""
    
    def prepare(self) -> None:
        """Initialize storage; raise SetupError if that is impossible."""
        ...
    
    def flush(self, song: Song, comments: Sequence[Comment]) -> None:
        """Persist one song's comments; raise SinkError on failure."""
        ...


class JsonDirectorySink:
    """
    Writes one ``song_<id>.json`` file per song into a directory.
    
    Each song owns a distinct file, so concurrent flushes from different
    walkers never touch the same output.
    
    Args:
        root: Output directory (created by ``prepare()``)
    
    Example:
        ```python
        sink = JsonDirectorySink("comments")
        sink.prepare()
        sink.flush(Song(id=1, name="Foo"), comments)
        # -> comments/song_1.json
        ```
    """
    
    def __init__(self, root: Union[str, Path] = "comments"):
        self.root = Path(root)
    
    def path_for(self, song: Song) -> Path:
        return self.root / f"song_{song.id}.json"
    
    def prepare(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SetupError(f"Cannot create output directory {self.root}: {e}") from e
    
    def flush(self, song: Song, comments: Sequence[Comment]) -> None:
        path = self.path_for(song)
        payload = {
            "song_id": song.id,
            "song_name": song.name,
            "comments": [comment.to_dict() for comment in comments],
        }
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            # Lone surrogates only occur inside JSON strings; backslashreplace
            # turns them into \uXXXX escapes that decode back to the same text.
            data = json.dumps(payload, ensure_ascii=False, indent=2).encode(
                "utf-8", errors="backslashreplace"
            )
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except (OSError, ValueError) as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            raise SinkError(f"Cannot write {path}: {e}") from e
        logger.debug("Wrote %d comments to %s", len(comments), path)
    
    def __repr__(self) -> str:
        return f"JsonDirectorySink(root={str(self.root)!r})"
