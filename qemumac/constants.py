"""Global constants and architecture profiles for qemu-mac-runner."""

from __future__ import annotations

import os
import re

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off"}
MAC_ADDRESS_RE = re.compile(r"^[0-9a-f]{2}(:[0-9a-f]{2}){5}$")
CONFIG_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
DISK_SIZE_RE = re.compile(r"^\d+[KMGTkmgt]?$")
RAM_SIZE_RE = re.compile(r"^(\d+)([MmGg])?$")
GRAPHICS_RE = re.compile(r"^(\d+)x(\d+)x(\d+)$")
SCSI_VENDOR_RE = re.compile(r"^[A-Z0-9 ]{1,8}$")
SCSI_SERIAL_PREFIX_RE = re.compile(r"^[A-Z0-9]{2,4}$")

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

PROFILES_ENV = "QEMU_MAC_PROFILES"

# PRAM layout (one 256-byte block, as created by `dd bs=256 count=1`)
PRAM_SIZE = 256
PRAM_SELECTOR_OFFSET = 0x78  # DriveId/PartitionId
PRAM_REFERENCE_OFFSET = 0x7A  # RefNum, little-endian
PRAM_SELECTOR_ANY = 0xFF
PRAM_REFERENCE_BIAS = 32

# Linux IFNAMSIZ is 16 including the trailing NUL
IFNAME_MAX_LEN = 15
TAP_PREFIX = "tap_"
QEMU_MAC_PREFIX = (0x52, 0x54, 0x00)

PASST_SOCKET_ATTEMPTS = 5
PASST_SOCKET_INTERVAL = 1.0

EXIT_SETUP_FAILURE = 125
EXIT_COMMAND_NOT_FOUND = 127
EXIT_INTERRUPTED = 130

DEFAULT_BRIDGE_NAME = "br0"
DEFAULT_SHARED_HDD_SIZE = "200M"
DEFAULT_SCSI_VENDOR = "SEAGATE"

ARCH_ALIASES = {
    "68k": "m68k",
    "m68040": "m68k",
    "powerpc": "ppc",
    "ppc32": "ppc",
}

SUPPORTED_ARCHES = {
    "m68k": {
        "binary": "qemu-system-m68k",
        "machines": ("q800",),
        "bus": "scsi",
        "bus_ids": tuple(range(7)),  # id 7 belongs to the host adapter
        "priority": {
            "os_disk": 0,
            "shared_disk": 1,
            "installer_medium": 3,
        },
        "required": ("QEMU_MACHINE", "QEMU_RAM", "QEMU_HDD", "QEMU_SHARED_HDD", "QEMU_GRAPHICS", "QEMU_ROM", "QEMU_PRAM"),
        "boot_mechanism": "pram",
        "nic_model": "dp83932",
        "default_network": "tap",
        "default_hdd_size": "1G",
        "cpu_models": ("m68000", "m68010", "m68020", "m68030", "m68040", "m68060"),
    },
    "ppc": {
        "binary": "qemu-system-ppc",
        "machines": ("mac99", "g3beige"),
        "bus": "ide",
        "bus_ids": tuple(range(4)),  # ide.0/ide.1, two units each
        "priority": {
            "os_disk": 0,
            "shared_disk": 2,
            "installer_medium": 1,
        },
        "required": ("QEMU_MACHINE", "QEMU_RAM", "QEMU_HDD", "QEMU_SHARED_HDD", "QEMU_GRAPHICS"),
        "boot_mechanism": "ordinal",
        "nic_model": "rtl8139",
        "default_network": "user",
        "default_hdd_size": "2G",
        "cpu_models": (),
    },
}

# Per-role bus id override keys
BUS_ID_KEYS = {
    "os_disk": "QEMU_HDD_BUS_ID",
    "shared_disk": "QEMU_SHARED_HDD_BUS_ID",
    "installer_medium": "QEMU_CD_BUS_ID",
    "extra_disk": "QEMU_EXTRA_HDD_BUS_ID",
}

# Older configs name the storage modes after the bus
CACHE_MODE_KEYS = ("QEMU_CACHE_MODE", "QEMU_SCSI_CACHE_MODE", "QEMU_IDE_CACHE_MODE")
AIO_MODE_KEYS = ("QEMU_AIO_MODE", "QEMU_SCSI_AIO_MODE", "QEMU_IDE_AIO_MODE")

DISPLAY_TYPES = {"sdl", "gtk", "cocoa", "vnc", "none"}
AUDIO_BACKENDS = {"pa", "alsa", "sdl", "oss", "none", "wav", "spice", "dbus", "pipewire", "coreaudio"}
ASC_MODES = {"easc", "asc"}
TCG_THREAD_MODES = {"single", "multi"}
MEMORY_BACKENDS = {"ram", "file", "memfd"}
DISPLAY_DEVICES = {"built-in", "nubus-macfb"}

RESOLUTION_PRESETS = {
    "mac_standard": "1152x870x8",
    "vga": "640x480x8",
    "svga": "800x600x8",
    "xga": "1024x768x8",
    "sxga": "1280x1024x8",
}

TB_SIZE_RECOMMENDED = (64, 1024)

QCOW2_SUFFIXES = {".qcow2", ".qcow"}
