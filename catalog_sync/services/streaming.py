"""Incremental decoding of large JSON arrays.

Feeds are far too large to load whole, so bytes are pushed into ijson's
coroutine parser as they arrive and each array element is rebuilt and
yielded as soon as its last token has been seen. Memory use is bounded by
the largest single element plus one network chunk.
"""

from collections.abc import AsyncIterable, AsyncIterator, Iterator
from typing import Any

import ijson

from catalog_sync.core.errors import FramingError

_OPENERS = frozenset({"start_map", "start_array"})
_CLOSERS = frozenset({"end_map", "end_array"})


class _ArrayFramer:
    """Turns ijson parse events into complete elements of one array.

    ``path`` is the ijson prefix of the array: ``""`` for a top-level array,
    ``"data"`` for ``{"data": [...]}``. A top-level array must be the very
    first token; a nested one may be preceded by sibling keys.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.opened = False
        self.closed = False
        self._builder: ijson.ObjectBuilder | None = None
        self._depth = 0

    def feed(self, events: list[tuple[str, str, Any]]) -> Iterator[Any]:
        for prefix, event, value in events:
            if self._builder is not None:
                yield from self._continue_element(event, value)
                continue

            if not self.opened:
                if prefix == self.path and event == "start_array":
                    self.opened = True
                elif not self.path:
                    raise FramingError(f"expected JSON array, got {event}")
                continue

            if self.closed:
                continue

            if prefix == self.path and event == "end_array":
                self.closed = True
                continue

            self._builder = ijson.ObjectBuilder()
            self._depth = 0
            yield from self._continue_element(event, value)

    def _continue_element(self, event: str, value: Any) -> Iterator[Any]:
        assert self._builder is not None
        self._builder.event(event, value)
        if event in _OPENERS:
            self._depth += 1
        elif event in _CLOSERS:
            self._depth -= 1

        if self._depth == 0:
            element = self._builder.value
            self._builder = None
            yield element


async def iter_json_array(
    chunks: AsyncIterable[bytes],
    *,
    path: str = "",
) -> AsyncIterator[Any]:
    """Yield the elements of a JSON array as they are decoded.

    Args:
        chunks: Raw bytes of the document, in any chunking
        path: ijson prefix of the array within the document

    Raises:
        FramingError: if the array is missing, truncated, or followed by
            trailing content
    """
    framer = _ArrayFramer(path)
    events = ijson.sendable_list()
    parser = ijson.parse_coro(events, use_float=True)

    try:
        async for chunk in chunks:
            if not chunk:
                continue
            parser.send(chunk)
            batch = list(events)
            del events[:]
            for element in framer.feed(batch):
                yield element

        parser.close()
    except ijson.JSONError as e:
        raise FramingError(f"malformed JSON stream: {e}") from e

    # Events flushed by close()
    for element in framer.feed(list(events)):
        yield element

    where = f" at {path!r}" if path else ""
    if not framer.opened:
        raise FramingError(f"expected JSON array{where}")
    if not framer.closed:
        raise FramingError(f"expected JSON array end{where}")
