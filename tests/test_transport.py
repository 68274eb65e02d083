import pytest

from qrsignal.protocol.chunking import Fragment, split
from qrsignal.protocol.transport import CodeTransport


@pytest.fixture
def fragment():
    return split("H4sIAAAAAAAA/8tIzcnJBwCGphA2BQAAAA==", 800)[0]


class TestEncodeFragment:
    def test_renderable_code_fields(self, fragment):
        code = CodeTransport().encode_fragment(fragment)
        assert code.text == fragment.to_wire()
        assert code.index == 0
        assert code.total == 1
        assert 1 <= code.version <= 40

    def test_png(self, fragment):
        png = CodeTransport(box_size=2, border=1).encode_fragment(fragment).to_png()
        assert png.startswith(b"\x89PNG\r\n\x1a\n")

    def test_svg(self, fragment):
        svg = CodeTransport().encode_fragment(fragment).to_svg()
        assert b"<svg" in svg

    def test_ascii(self, fragment):
        art = CodeTransport().encode_fragment(fragment).to_ascii()
        assert len(art.splitlines()) > 10

    def test_default_fragment_length_fits(self):
        long_fragment = split("A" * 2000, 800)[0]
        code = CodeTransport(error_correction="Q").encode_fragment(long_fragment)
        assert code.version <= 40

    def test_overflow_raises_value_error(self):
        too_big = Fragment("b1", 0, 1, "x" * 5000)
        with pytest.raises(ValueError, match="too large"):
            CodeTransport(error_correction="H").encode_fragment(too_big)

    def test_past_version_40_raises_value_error(self):
        with pytest.raises(ValueError, match="too large"):
            CodeTransport().encode_fragment(Fragment("b1", 0, 1, "a" * 4000))

    def test_higher_error_correction_needs_bigger_symbol(self, fragment):
        low = CodeTransport(error_correction="L").encode_fragment(fragment)
        high = CodeTransport(error_correction="H").encode_fragment(fragment)
        assert high.version >= low.version

    @pytest.mark.parametrize("kwargs", [
        {"error_correction": "X"},
        {"box_size": 0},
        {"border": -1},
    ])
    def test_bad_settings(self, kwargs):
        with pytest.raises(ValueError):
            CodeTransport(**kwargs)

    @pytest.mark.parametrize("level, length, fits", [
        ("Q", 800, True),
        ("H", 800, True),
        ("Q", 60, True),
        ("Q", 4000, False),
        ("H", 1500, False),
    ])
    def test_fits_payload_len(self, level, length, fits):
        assert CodeTransport(error_correction=level).fits_payload_len(length) is fits

    def test_lowercase_level_accepted(self):
        assert CodeTransport(error_correction="m").error_correction == "M"


class TestDecodeSymbol:
    def test_wire_string(self, fragment):
        assert CodeTransport().decode_symbol(fragment.to_wire()) == fragment.to_wire()

    def test_bytes(self, fragment):
        wire = fragment.to_wire()
        assert CodeTransport().decode_symbol(wire.encode()) == wire

    def test_trailing_newline_stripped(self, fragment):
        wire = fragment.to_wire()
        assert CodeTransport().decode_symbol(wire + "\r\n") == wire

    def test_only_one_terminator_stripped(self):
        wire = Fragment("b1", 0, 1, "AAA\r\n").to_wire()
        assert CodeTransport().decode_symbol(wire + "\n") == wire

    def test_inner_line_breaks_kept(self):
        wire = Fragment("b1", 0, 1, "\nAA\rA").to_wire()
        assert CodeTransport().decode_symbol(wire + "\r\n") == wire

    @pytest.mark.parametrize("symbol", [None, "", "https://example.com", b"\xff\xfe", "b1|0|0|x"])
    def test_foreign_symbols(self, symbol):
        assert CodeTransport().decode_symbol(symbol) is None

    def test_image_with_decoder(self, fragment):
        image = object()
        transport = CodeTransport(decoder=lambda img: fragment.to_wire() if img is image else None)
        assert transport.decode_symbol(image) == fragment.to_wire()

    def test_image_without_decoder(self):
        assert CodeTransport().decode_symbol(object()) is None

    def test_decoder_failure_is_not_fatal(self):
        def broken(img):
            raise RuntimeError("camera frame unreadable")

        assert CodeTransport(decoder=broken).decode_symbol(object()) is None

    def test_decoder_finding_nothing(self):
        assert CodeTransport(decoder=lambda img: None).decode_symbol(object()) is None
