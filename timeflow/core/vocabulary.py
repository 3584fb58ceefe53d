"""
Closed tag vocabulary: filtering proposed tags and a read-only cache of the
stored tag names.
"""

import threading
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from ..util.logging import logger


def filter_tags(proposed: Iterable[str], allowed: Sequence[str]) -> Tuple[str, ...]:
    """
    Keep only proposed tags present in allowed (exact, case-sensitive match).

    Unknown tags are dropped silently. Duplicates collapse to their first
    occurrence; order otherwise follows the proposal.
    """
    allowed_set = set(allowed)
    kept: List[str] = []
    dropped: List[str] = []
    for tag in proposed:
        if tag in allowed_set:
            if tag not in kept:
                kept.append(tag)
        else:
            dropped.append(tag)

    if dropped:
        logger.log_operation("vocabulary.filter", "dropped", {"tags": dropped})
    return tuple(kept)


class TagVocabulary:
    """
    Shared snapshot of allowed tag names.

    The snapshot is an immutable tuple; refresh() builds a new one and swaps
    the reference, so a resolution holding an older snapshot is unaffected.
    """

    def __init__(self, loader: Optional[Callable[[], Iterable[str]]] = None, names: Iterable[str] = ()):
        self._loader = loader
        self._names: Tuple[str, ...] = tuple(names)
        self._lock = threading.Lock()
        self._loaded = bool(self._names)

    def snapshot(self) -> Tuple[str, ...]:
        if not self._loaded and self._loader is not None:
            self.refresh()
        return self._names

    def refresh(self) -> Tuple[str, ...]:
        if self._loader is None:
            return self._names
        fresh = tuple(self._loader())
        with self._lock:
            self._names = fresh
            self._loaded = True
        logger.log_operation("vocabulary.refresh", "success", {"count": len(fresh)})
        return fresh


def store_tag_names() -> List[str]:
    """Loader reading tag names from the event/tag store."""
    from .dao import list_tags
    return [tag.name for tag in list_tags()]
