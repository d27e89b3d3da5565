"""Tests for qemumac.pram module."""

from __future__ import annotations

import pytest

from qemumac.exceptions import EncodingError
from qemumac.pram import (
    decode_reference,
    describe_boot_state,
    encode_reference,
    ensure_boot_state,
    load_boot_state,
    read_boot_target,
    write_boot_target,
)


class TestReferenceEncoding:
    @pytest.mark.parametrize(
        "bus_id,reference",
        [(0, 0xFFDF), (1, 0xFFDE), (3, 0xFFDC), (6, 0xFFD9)],
    )
    def test_known_values(self, bus_id, reference):
        assert encode_reference(bus_id) == reference
        assert decode_reference(reference) == bus_id

    def test_inverse_over_range(self):
        for bus_id in range(0, 0xFFE0, 97):
            assert decode_reference(encode_reference(bus_id)) == bus_id

    @pytest.mark.parametrize("bus_id", [-1, 0xFFE0])
    def test_out_of_range(self, bus_id):
        with pytest.raises(EncodingError, match="cannot be encoded"):
            encode_reference(bus_id)


class TestBootStateFile:
    def test_creates_zeroed_file(self, tmp_path):
        path = tmp_path / "nested" / "pram.img"
        state = ensure_boot_state(path)
        assert path.read_bytes() == bytes(256)
        assert len(state.data) == 256

    def test_empty_file_is_initialised(self, tmp_path):
        path = tmp_path / "pram.img"
        path.write_bytes(b"")
        ensure_boot_state(path)
        assert path.stat().st_size == 256

    def test_existing_file_kept(self, tmp_path):
        path = tmp_path / "pram.img"
        original = bytes(range(256))
        path.write_bytes(original)
        state = ensure_boot_state(path)
        assert bytes(state.data) == original

    def test_short_buffer_rejected(self, tmp_path):
        path = tmp_path / "pram.img"
        path.write_bytes(b"\x00" * 100)
        with pytest.raises(EncodingError, match="at least 124"):
            ensure_boot_state(path)

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(EncodingError, match="Cannot read PRAM file"):
            load_boot_state(tmp_path / "missing.img")


class TestWriteBootTarget:
    def test_writes_selector_and_reference(self, tmp_path):
        path = tmp_path / "pram.img"
        state = ensure_boot_state(path)
        write_boot_target(state, 3)
        data = path.read_bytes()
        assert data[120] == 0xFF
        assert data[122:124] == bytes([0xDC, 0xFF])

    def test_only_boot_fields_change(self, tmp_path):
        path = tmp_path / "pram.img"
        original = bytes((i * 7) % 256 for i in range(256))
        path.write_bytes(original)
        state = ensure_boot_state(path)
        write_boot_target(state, 0)
        data = path.read_bytes()
        changed = [i for i in range(256) if data[i] != original[i]]
        assert set(changed) <= {120, 122, 123}
        assert len(data) == 256

    def test_round_trip_through_file(self, tmp_path):
        path = tmp_path / "pram.img"
        for bus_id in (0, 1, 3, 6):
            write_boot_target(ensure_boot_state(path), bus_id)
            assert read_boot_target(load_boot_state(path)) == bus_id

    def test_in_memory_copy_updated(self, tmp_path):
        state = ensure_boot_state(tmp_path / "pram.img")
        write_boot_target(state, 1)
        assert read_boot_target(state) == 1

    def test_invalid_bus_id_leaves_file_untouched(self, tmp_path):
        path = tmp_path / "pram.img"
        state = ensure_boot_state(path)
        with pytest.raises(EncodingError):
            write_boot_target(state, 0x10000)
        assert path.read_bytes() == bytes(256)


class TestReadBootTarget:
    def test_unset_selector_returns_none(self, tmp_path):
        state = ensure_boot_state(tmp_path / "pram.img")
        assert read_boot_target(state) is None

    def test_describe(self, tmp_path):
        state = ensure_boot_state(tmp_path / "pram.img")
        write_boot_target(state, 0)
        text = describe_boot_state(state)
        assert "Selector @0x78: 0xFF" in text
        assert "RefNum   @0x7A: 0xFFDF" in text
        assert "bus id 0" in text
        assert "0000:" in text and "0010:" in text
