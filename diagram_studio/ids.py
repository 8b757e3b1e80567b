"""Id generators for nodes, edges, diagrams and messages.

Generators are plain callables taking a prefix (``"node"``, ``"edge"``, ...)
and returning a fresh id. They are injected wherever ids are minted so tests
can use a deterministic sequence.
"""

import uuid
from collections import defaultdict
from typing import Callable

IdGenerator = Callable[[str], str]


def random_id(prefix: str) -> str:
    """Random id such as ``node_3f9a1c2b7d4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class SequentialIds:
    """Counter-based ids, one counter per prefix, scoped to this instance."""

    def __init__(self, start: int = 1):
        self._start = start
        self._counters: dict[str, int] = defaultdict(lambda: self._start)

    def __call__(self, prefix: str) -> str:
        value = self._counters[prefix]
        self._counters[prefix] = value + 1
        return f"{prefix}_{value}"
