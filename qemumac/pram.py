"""PRAM boot-order buffer handling for the m68k machine.

The Quadra 800 firmware reads its start-up disk from parameter RAM. QEMU keeps
that memory in a 256-byte raw file; the boot device is selected by two fields:

* offset 120 (one byte): drive selector, ``0xFF`` means "use the reference"
* offset 122 (u16, little-endian): reference number, ``~(bus_id + 32)``
"""

from __future__ import annotations

import struct
from pathlib import Path
from typing import Optional

from qemumac.constants import (
    PRAM_REFERENCE_BIAS,
    PRAM_REFERENCE_OFFSET,
    PRAM_SELECTOR_ANY,
    PRAM_SELECTOR_OFFSET,
    PRAM_SIZE,
)
from qemumac.exceptions import EncodingError
from qemumac.models import BootState
from qemumac.utils import ensure_directory, log

_MIN_LENGTH = PRAM_REFERENCE_OFFSET + 2
_MAX_BUS_ID = 0xFFFF - PRAM_REFERENCE_BIAS


def encode_reference(bus_id: int) -> int:
    if not 0 <= bus_id <= _MAX_BUS_ID:
        raise EncodingError(f"Bus id {bus_id} cannot be encoded (valid range 0-{_MAX_BUS_ID})")
    return ~(bus_id + PRAM_REFERENCE_BIAS) & 0xFFFF


def decode_reference(reference: int) -> int:
    return (~reference & 0xFFFF) - PRAM_REFERENCE_BIAS


def _check_length(state: BootState) -> None:
    if len(state.data) < _MIN_LENGTH:
        raise EncodingError(
            f"PRAM file {state.path} is {len(state.data)} bytes; at least {_MIN_LENGTH} are required"
        )


def ensure_boot_state(path: Path) -> BootState:
    """Load the PRAM file, creating a zero-filled one when it is missing or empty."""
    try:
        if not path.exists() or path.stat().st_size == 0:
            ensure_directory(path.parent)
            path.write_bytes(bytes(PRAM_SIZE))
            log("INFO", f"Created PRAM file: {path}")
        data = bytearray(path.read_bytes())
    except OSError as exc:
        raise EncodingError(f"Cannot access PRAM file {path}: {exc}") from exc
    state = BootState(path=path, data=data)
    _check_length(state)
    return state


def load_boot_state(path: Path) -> BootState:
    """Load an existing PRAM file without creating it."""
    try:
        data = bytearray(path.read_bytes())
    except OSError as exc:
        raise EncodingError(f"Cannot read PRAM file {path}: {exc}") from exc
    state = BootState(path=path, data=data)
    _check_length(state)
    return state


def write_boot_target(state: BootState, bus_id: int) -> None:
    """Point the firmware at ``bus_id``, touching only the selector and reference bytes."""
    _check_length(state)
    reference = encode_reference(bus_id)
    packed = struct.pack("<H", reference)
    try:
        with state.path.open("r+b") as handle:
            handle.seek(PRAM_SELECTOR_OFFSET)
            handle.write(bytes([PRAM_SELECTOR_ANY]))
            handle.seek(PRAM_REFERENCE_OFFSET)
            handle.write(packed)
    except OSError as exc:
        raise EncodingError(f"Cannot update PRAM file {state.path}: {exc}") from exc
    state.data[PRAM_SELECTOR_OFFSET] = PRAM_SELECTOR_ANY
    state.data[PRAM_REFERENCE_OFFSET:PRAM_REFERENCE_OFFSET + 2] = packed
    log("INFO", f"PRAM boot target set to bus id {bus_id} (RefNum 0x{reference:04X})")


def read_boot_target(state: BootState) -> Optional[int]:
    """Return the bus id stored in the buffer, or None when no target is selected."""
    _check_length(state)
    if state.data[PRAM_SELECTOR_OFFSET] != PRAM_SELECTOR_ANY:
        return None
    (reference,) = struct.unpack_from("<H", state.data, PRAM_REFERENCE_OFFSET)
    return decode_reference(reference)


def describe_boot_state(state: BootState) -> str:
    _check_length(state)
    selector = state.data[PRAM_SELECTOR_OFFSET]
    (reference,) = struct.unpack_from("<H", state.data, PRAM_REFERENCE_OFFSET)
    target = read_boot_target(state)
    lines = [
        f"PRAM file: {state.path} ({len(state.data)} bytes)",
        f"Selector @0x{PRAM_SELECTOR_OFFSET:02X}: 0x{selector:02X}",
        f"RefNum   @0x{PRAM_REFERENCE_OFFSET:02X}: 0x{reference:04X}",
        f"Boot target: {'not set' if target is None else f'bus id {target}'}",
        "First 32 bytes:",
    ]
    head = bytes(state.data[:32])
    for offset in range(0, len(head), 16):
        chunk = head[offset:offset + 16]
        lines.append(f"  {offset:04x}: {' '.join(f'{byte:02x}' for byte in chunk)}")
    return "\n".join(lines)
