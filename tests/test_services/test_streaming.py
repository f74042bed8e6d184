"""Tests for incremental JSON array decoding."""

import json

import pytest

from catalog_sync.core.errors import FramingError
from catalog_sync.services.streaming import iter_json_array

pytestmark = pytest.mark.asyncio


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


def _split(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


async def _collect(chunks, **kwargs):
    return [element async for element in iter_json_array(chunks, **kwargs)]


class TestTopLevelArray:
    """Tests for a top-level JSON array feed."""

    async def test_yields_each_element(self):
        """Should decode every element in order."""
        records = [{"id": "a", "name": "Opt"}, {"id": "b", "prices": {"usd": 1.5}}, [1, 2], "x"]

        result = await _collect(_chunks(json.dumps(records).encode()))

        assert result == records

    async def test_floats_are_floats(self):
        """Should decode non-integer numbers as float, not Decimal."""
        result = await _collect(_chunks(b'[{"cmc": 2.5}]'))

        assert isinstance(result[0]["cmc"], float)

    async def test_empty_array(self):
        """Should yield nothing for an empty array."""
        assert await _collect(_chunks(b"  [ ]  ")) == []

    @pytest.mark.parametrize("size", [1, 2, 3, 7, 64])
    async def test_arbitrary_chunk_boundaries(self, size):
        """Should not depend on where the byte stream is split."""
        records = [{"id": str(i), "name": f"Card é {i}", "n": i * 1.25} for i in range(20)]
        data = json.dumps(records, ensure_ascii=False).encode()

        result = await _collect(_chunks(*_split(data, size)))

        assert result == records

    async def test_elements_are_yielded_before_the_stream_ends(self):
        """Should hand out an element as soon as it is complete."""
        consumed = []

        async def tracked():
            for part in (b'[{"id": 1},', b'{"id": 2}', b"]"):
                consumed.append(part)
                yield part

        stream = iter_json_array(tracked())
        first = await anext(stream)

        assert first == {"id": 1}
        assert len(consumed) == 1
        assert [element async for element in stream] == [{"id": 2}]


class TestFraming:
    """Tests for malformed feeds."""

    @pytest.mark.parametrize("payload", [b'{"data": []}', b"42", b'"text"'])
    async def test_rejects_non_array_top_level(self, payload):
        """Should require the first token to be an array start."""
        with pytest.raises(FramingError):
            await _collect(_chunks(payload))

    async def test_rejects_truncated_input(self):
        """Should fail when the closing bracket never arrives."""
        with pytest.raises(FramingError):
            await _collect(_chunks(b'[{"id": 1}, {"id": 2}'))

    async def test_truncated_input_still_yields_complete_prefix(self):
        """Should yield the complete elements before failing."""
        seen = []
        with pytest.raises(FramingError):
            async for element in iter_json_array(_chunks(b'[{"id": 1}, {"id": 2}, {"id"')):
                seen.append(element)

        assert seen == [{"id": 1}, {"id": 2}]

    async def test_rejects_trailing_content(self):
        """Should fail on anything after the closing bracket."""
        with pytest.raises(FramingError):
            await _collect(_chunks(b'[{"id": 1}]', b' {"id": 2}'))

    async def test_rejects_empty_stream(self):
        """Should fail when there is no document at all."""
        with pytest.raises(FramingError):
            await _collect(_chunks())

    async def test_rejects_invalid_json(self):
        """Should report syntax errors as framing errors."""
        with pytest.raises(FramingError, match="malformed"):
            await _collect(_chunks(b"[{id: 1}]"))


class TestNestedArray:
    """Tests for arrays inside a list response, e.g. ``{"data": [...]}``."""

    async def test_streams_the_named_array(self):
        """Should yield the elements of ``data`` and ignore sibling keys."""
        payload = {
            "object": "list",
            "has_more": False,
            "data": [{"code": "lea"}, {"code": "leb", "tags": ["a", "b"]}],
            "warnings": ["ignored"],
        }

        result = await _collect(_chunks(*_split(json.dumps(payload).encode(), 5)), path="data")

        assert result == payload["data"]

    async def test_missing_array_raises(self):
        """Should fail when the document has no such array."""
        with pytest.raises(FramingError, match="'data'"):
            await _collect(_chunks(b'{"object": "list"}'), path="data")

    async def test_nested_arrays_inside_elements(self):
        """Should keep element-internal arrays and objects intact."""
        payload = {"data": [{"code": "a", "nested": {"data": [1, 2]}}]}

        result = await _collect(_chunks(json.dumps(payload).encode()), path="data")

        assert result == payload["data"]
