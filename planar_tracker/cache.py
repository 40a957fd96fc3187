from __future__ import annotations

import logging
from typing import Callable, Dict, Hashable, Iterator, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")


class KernelCache:
    """Compiled kernel handles keyed by the structural parameters of their shape.

    An entry is a pure function of its key and is built at most once.
    """

    def __init__(self) -> None:
        self._entries: Dict[Hashable, object] = {}
        self.builds = 0

    def get_or_build(self, key: Hashable, build: Callable[[], K]) -> K:
        try:
            return self._entries[key]  # type: ignore[return-value]
        except KeyError:
            pass
        logger.debug("building kernel for %s", key)
        entry = build()
        self._entries[key] = entry
        self.builds += 1
        return entry

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> Iterator[Hashable]:
        return iter(self._entries.keys())
