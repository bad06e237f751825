"""
Harvest Configuration & Presets
===============================

Immutable harvest settings plus a few named pacing profiles.

Usage:
    ```python
    from pocketflow_comments import HarvestConfig, Presets
    
    config = HarvestConfig(max_concurrent_items=10, request_delay=0.2)
    
    # Or start from a named profile
    config = Presets.get("gentle")
    
    # Tweak a single field
    config = dataclasses.replace(Presets.DEFAULT, confirm_exhaustion=True)
    ```
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class HarvestConfig:
    """
    Immutable harvest configuration.
    
    Attributes:
        page_size: Comments requested per page
        max_offset: Hard stop; no request is made at or beyond this offset
        request_delay: Minimum seconds between two requests of one walker
        max_concurrent_items: Songs walked simultaneously
        progress_step: Per-song bar advances by this many pages, every this many pages
        confirm_exhaustion: Probe once more after a short page before stopping
        description: Human-readable description
    """
    page_size: int = 100
    max_offset: int = 10000
    request_delay: float = 0.05
    max_concurrent_items: int = 50
    progress_step: int = 5
    confirm_exhaustion: bool = False
    description: str = ""
    
    def __post_init__(self):
        if self.page_size < 1:
            raise ValueError("page_size must be at least 1")
        if self.max_offset < 0:
            raise ValueError("max_offset must be non-negative")
        if self.request_delay < 0:
            raise ValueError("request_delay must be non-negative")
        if self.max_concurrent_items < 1:
            raise ValueError("max_concurrent_items must be at least 1")
        if self.progress_step < 1:
            raise ValueError("progress_step must be at least 1")
    
    @property
    def estimated_pages(self) -> int:
        """Upper bound on pages per song implied by max_offset."""
        return -(-self.max_offset // self.page_size)
    
    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result.pop("description")
        return result


class Presets:
    """
    Named pacing profiles.
    
    Example:
        ```python
        flow = CommentHarvestFlow(start=walker, sink=sink,
                                  max_concurrent_items=Presets.GENTLE.max_concurrent_items)
        ```
    """
    
    DEFAULT = HarvestConfig(
        description="50 songs at once, 50ms between requests per song",
    )
    
    GENTLE = HarvestConfig(
        request_delay=0.2,
        max_concurrent_items=10,
        description="10 songs at once, 200ms between requests per song",
    )
    
    AGGRESSIVE = HarvestConfig(
        request_delay=0.02,
        max_concurrent_items=100,
        description="100 songs at once, 20ms between requests per song",
    )
    
    @classmethod
    def get(cls, name: str) -> HarvestConfig:
        """
        Get a preset by (case-insensitive) name.
        
        Raises:
            ValueError: If preset name not found
        """
        preset = getattr(cls, name.upper(), None)
        if not isinstance(preset, HarvestConfig):
            available = ", ".join(cls.list_presets())
            raise ValueError(f"Unknown preset '{name}'. Available: {available}")
        return preset
    
    @classmethod
    def list_presets(cls) -> Dict[str, str]:
        """Map of preset name to description."""
        return {
            name.lower(): value.description
            for name, value in vars(cls).items()
            if isinstance(value, HarvestConfig)
        }
