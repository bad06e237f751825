"""
Progress Tracking
=================

Two-level live progress: one overall bar counting finished songs, and one
transient bar per song in flight counting pages walked.

Rendering goes through tqdm; the counters are kept independently so that a
disabled display (``disable=True``) still reports exact numbers.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tqdm import tqdm


@dataclass
class ItemProgress:
    """Handle for one song's page counter."""
    label: str
    total: int
    count: int = 0
    finished: bool = False
    message: str = ""
    bar: Optional[tqdm] = field(default=None, repr=False)


class ProgressTracker:
    """
    Overall and per-song progress counters.
    
    All methods may be called from any walker; each update holds an internal
    lock only for the duration of the counter change and bar refresh, never
    across an await.
    
    Args:
        disable: Suppress the tqdm display (counters are still maintained)
        unit: Unit label of the overall bar
        item_unit: Unit label of the per-song bars
    
    Example:
        ```python
        progress = ProgressTracker()
        progress.new_overall(len(songs))
        
        handle = progress.new_item("song 1/3", estimated_units=100)
        progress.inc_item(handle, 5)
        progress.finish_item(handle, "song Foo done")
        progress.inc_overall()
        
        progress.close()
        ```
    """
    
    def __init__(self, disable: bool = False, unit: str = "song", item_unit: str = "page"):
        self.disable = disable
        self.unit = unit
        self.item_unit = item_unit
        
        self._lock = threading.Lock()
        self._overall_total = 0
        self._overall_completed = 0
        self._overall_bar: Optional[tqdm] = None
        self._active: List[ItemProgress] = []
    
    @property
    def overall_total(self) -> int:
        return self._overall_total
    
    @property
    def overall_completed(self) -> int:
        return self._overall_completed
    
    @property
    def active_items(self) -> int:
        """Per-song counters created and not yet finished."""
        return len(self._active)
    
    def new_overall(self, total: int) -> None:
        """Start a new run: overall counter goes to 0/total."""
        if total < 0:
            raise ValueError("total must be non-negative")
        with self._lock:
            if self._overall_bar is not None:
                self._overall_bar.close()
            self._overall_total = total
            self._overall_completed = 0
            self._overall_bar = tqdm(
                total=total,
                desc="songs",
                unit=self.unit,
                disable=self.disable,
            )
    
    def inc_overall(self) -> bool:
        """
        Count one finished song.
        
        Returns:
            False if the counter was already at its total (nothing changed)
        """
        with self._lock:
            if self._overall_completed >= self._overall_total:
                return False
            self._overall_completed += 1
            if self._overall_bar is not None:
                self._overall_bar.update(1)
            return True
    
    def new_item(self, label: str, estimated_units: int) -> ItemProgress:
        """Create a per-song sub-counter."""
        handle = ItemProgress(label=label, total=estimated_units)
        handle.bar = tqdm(
            total=estimated_units,
            desc=label,
            unit=self.item_unit,
            leave=False,
            disable=self.disable,
        )
        with self._lock:
            self._active.append(handle)
        return handle
    
    def inc_item(self, handle: ItemProgress, n: int = 1) -> None:
        """Add ``n`` to a per-song counter; ignored once the counter is finished."""
        with self._lock:
            if handle.finished:
                return
            handle.count += n
            if handle.bar is not None:
                handle.bar.update(n)
    
    def finish_item(self, handle: ItemProgress, message: str = "") -> None:
        """Mark a per-song counter terminal with a final label."""
        with self._lock:
            if handle.finished:
                return
            handle.finished = True
            handle.message = message
            if handle.bar is not None:
                if message:
                    handle.bar.set_description_str(message, refresh=False)
                handle.bar.close()
            if handle in self._active:
                self._active.remove(handle)
    
    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "completed": self._overall_completed,
                "total": self._overall_total,
                "active_items": len(self._active),
                "items": {h.label: h.count for h in self._active},
            }
    
    def close(self) -> None:
        """Tear down every bar still open."""
        with self._lock:
            for handle in self._active:
                if handle.bar is not None:
                    handle.bar.close()
            self._active = []
            if self._overall_bar is not None:
                self._overall_bar.close()
                self._overall_bar = None


class TqdmLoggingHandler(logging.Handler):
    """Logging handler that prints through ``tqdm.write`` so bars stay intact."""
    
    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record))
        except Exception:
            self.handleError(record)
