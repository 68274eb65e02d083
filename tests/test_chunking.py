import random

import pytest

from qrsignal.codec import PayloadCodec
from qrsignal.errors import BatchConflict, ParseError
from qrsignal.protocol.chunking import (
    Fragment,
    IngestStatus,
    ReassemblyBuffer,
    ingest,
    is_fragment,
    parse_fragment,
    reassemble,
    split,
    try_reassemble,
)


class TestSplit:
    def test_300_chars_into_3(self):
        text = "x" * 300
        fragments = split(text, 100)
        assert len(fragments) == 3
        assert [f.index for f in fragments] == [0, 1, 2]
        assert all(f.total == 3 for f in fragments)
        assert len({f.batch_id for f in fragments}) == 1

    def test_payload_slices(self):
        text = "abcdefghij"
        fragments = split(text, 4)
        assert [f.payload for f in fragments] == ["abcd", "efgh", "ij"]

    def test_empty_text_is_one_fragment(self):
        fragments = split("", 10)
        assert len(fragments) == 1
        assert fragments[0].payload == ""
        assert fragments[0].total == 1

    def test_fresh_batch_ids(self):
        assert split("abc", 10)[0].batch_id != split("abc", 10)[0].batch_id

    def test_max_len_below_one_rejected(self):
        with pytest.raises(ValueError):
            split("abc", 0)

    def test_bad_explicit_batch_id_rejected(self):
        with pytest.raises(ValueError):
            split("abc", 10, batch_id="a|b")

    def test_wire_format(self):
        fragment = Fragment(batch_id="b1", index=2, total=5, payload="xy|z")
        assert fragment.to_wire() == "b1|2|5|xy|z"
        assert fragment.label == "3/5"


class TestParseFragment:
    def test_payload_may_contain_separator(self):
        fragment = parse_fragment("b1|0|1|a|b|c")
        assert fragment == Fragment("b1", 0, 1, "a|b|c")

    def test_empty_payload(self):
        assert parse_fragment("b1|0|1|").payload == ""

    @pytest.mark.parametrize("raw", [
        "abc",
        "b1|0|1",
        "|0|1|x",
        "b1|x|1|x",
        "b1|0|y|x",
        "b1|-1|2|x",
        "b1|0|0|x",
        "b1|2|2|x",
        "b1|١|2|x",
        "b1| 0|2|x",
    ])
    def test_malformed(self, raw):
        with pytest.raises(ParseError):
            parse_fragment(raw)
        assert not is_fragment(raw)

    def test_error_carries_raw_text(self):
        with pytest.raises(ParseError) as exc_info:
            parse_fragment("abc")
        assert exc_info.value.raw == "abc"


class TestReassemblyBuffer:
    def test_out_of_order_completes_on_last(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(300))
        wires = [f.to_wire() for f in split(text, 100)]
        buffer = ReassemblyBuffer()

        ingest(buffer, wires[1])
        assert try_reassemble(buffer) is None
        ingest(buffer, wires[0])
        assert try_reassemble(buffer) is None
        result = ingest(buffer, wires[2])
        assert result.is_complete
        assert try_reassemble(buffer) == text

    def test_parse_error_leaves_buffer_unchanged(self):
        buffer = ReassemblyBuffer()
        wires = [f.to_wire() for f in split("x" * 30, 10)]
        ingest(buffer, wires[0])

        with pytest.raises(ParseError):
            ingest(buffer, "abc")
        assert buffer.progress == (1, 3)
        assert buffer.missing_indices == [1, 2]

    def test_parse_error_on_empty_buffer(self):
        buffer = ReassemblyBuffer()
        with pytest.raises(ParseError):
            ingest(buffer, "abc")
        assert buffer.is_empty
        assert buffer.progress == (0, 0)

    def test_shuffled_with_duplicates(self):
        rng = random.Random(7)
        text = "".join(rng.choice("abcdef|0123") for _ in range(997))
        wires = [f.to_wire() for f in split(text, 50)]
        scans = wires + rng.sample(wires, 10)
        rng.shuffle(scans)

        buffer = ReassemblyBuffer()
        for wire in scans:
            ingest(buffer, wire)
        assert try_reassemble(buffer) == text

    @pytest.mark.parametrize("max_len", range(1, 8))
    def test_multibyte_text_split_by_code_point(self, max_len):
        text = "多言語 ✓ 🚀"
        fragments = split(text, max_len)
        assert all(len(f.payload) <= max_len for f in fragments)
        assert "".join(f.payload for f in fragments) == text

        wires = [f.to_wire() for f in fragments]
        random.Random(max_len).shuffle(wires)
        buffer = ReassemblyBuffer()
        for wire in wires:
            ingest(buffer, wire)
        assert try_reassemble(buffer) == text

    def test_compressed_multibyte_text_survives_shuffled_scans(self):
        rng = random.Random(11)
        text = "Grüße 多言語 ✓ 🚀 émoji\r\n" * 20
        codec = PayloadCodec()
        wires = [f.to_wire() for f in split(codec.compress(text), 7)]
        scans = wires + rng.sample(wires, len(wires) // 2)
        rng.shuffle(scans)

        buffer = ReassemblyBuffer()
        for wire in scans:
            ingest(buffer, wire)
        assert codec.decompress(try_reassemble(buffer)) == text

    def test_strict_subset_never_reassembles(self):
        wires = [f.to_wire() for f in split("y" * 100, 10)]
        buffer = ReassemblyBuffer()
        for wire in wires[:-1] * 3:
            ingest(buffer, wire)
        assert try_reassemble(buffer) is None
        assert buffer.missing_indices == [9]

    def test_duplicate_is_idempotent(self):
        wires = [f.to_wire() for f in split("z" * 20, 10)]
        buffer = ReassemblyBuffer()
        assert ingest(buffer, wires[0]).status is IngestStatus.ADDED
        assert ingest(buffer, wires[0]).status is IngestStatus.DUPLICATE
        assert buffer.progress == (1, 2)

    def test_conflicting_payload_overwrites(self):
        buffer = ReassemblyBuffer()
        ingest(buffer, "b1|0|2|old")
        assert ingest(buffer, "b1|0|2|new").status is IngestStatus.OVERWRITTEN
        ingest(buffer, "b1|1|2|!")
        assert try_reassemble(buffer) == "new!"

    def test_new_batch_replaces_partial(self):
        buffer = ReassemblyBuffer()
        ingest(buffer, "old|0|3|a")
        ingest(buffer, "old|1|3|b")

        result = ingest(buffer, "new|0|2|c")
        assert result.replaced_batch_id == "old"
        assert buffer.batch_id == "new"
        assert buffer.progress == (1, 2)

        ingest(buffer, "new|1|2|d")
        assert try_reassemble(buffer) == "cd"

    def test_total_mismatch_conflicts(self):
        buffer = ReassemblyBuffer()
        ingest(buffer, "b1|0|3|a")

        with pytest.raises(BatchConflict) as exc_info:
            ingest(buffer, "b1|1|2|b")
        assert exc_info.value.expected_total == 3
        assert exc_info.value.actual_total == 2
        assert buffer.progress == (1, 3)

    def test_progress_message(self):
        buffer = ReassemblyBuffer()
        assert buffer.progress_message == "No chunks received"
        result = ingest(buffer, "b1|0|4|a")
        assert result.progress_message == "1 of 4 chunks received"
        assert buffer.progress_message == "1 of 4 chunks received"

    def test_reset(self):
        buffer = ReassemblyBuffer()
        ingest(buffer, "b1|0|2|a")
        buffer.reset()
        assert buffer.is_empty
        assert buffer.missing_indices == []


class TestReassembleHelper:
    def test_skips_junk(self):
        wires = [f.to_wire() for f in split("hello world", 3)]
        assert reassemble(["junk"] + wires[::-1]) == "hello world"

    def test_incomplete(self):
        wires = [f.to_wire() for f in split("hello world", 3)]
        assert reassemble(wires[1:]) is None
