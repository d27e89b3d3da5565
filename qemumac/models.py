"""Data models for qemu-mac-runner."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple


class Arch(Enum):
    M68K = "m68k"
    PPC = "ppc"


class BusKind(Enum):
    SCSI = "scsi"
    IDE = "ide"


class LogicalRole(Enum):
    OS_DISK = "os_disk"
    SHARED_DISK = "shared_disk"
    INSTALLER_MEDIUM = "installer_medium"
    EXTRA_DISK = "extra_disk"


# Order in which storage groups are emitted and addresses are reported
ROLE_ORDER = (
    LogicalRole.OS_DISK,
    LogicalRole.SHARED_DISK,
    LogicalRole.INSTALLER_MEDIUM,
    LogicalRole.EXTRA_DISK,
)


class CacheMode(Enum):
    WRITETHROUGH = "writethrough"
    WRITEBACK = "writeback"
    NONE = "none"
    DIRECTSYNC = "directsync"
    UNSAFE = "unsafe"


class AioMode(Enum):
    THREADS = "threads"
    NATIVE = "native"
    IO_URING = "io_uring"


class NetworkMode(Enum):
    TAP = "tap"
    USER = "user"
    PASST = "passt"


class NetworkState(Enum):
    UNPROVISIONED = "unprovisioned"
    BRIDGE_READY = "bridge-ready"
    INTERFACE_ATTACHED = "interface-attached"
    CLEANED = "cleaned"


class LaunchState(Enum):
    IDLE = "idle"
    VALIDATED = "validated"
    RESOURCES_READY = "resources-ready"
    COMMAND_BUILT = "command-built"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Configuration:
    arch: Arch
    name: str
    params: Mapping[str, str]
    machine: str
    memory_mb: int
    hdd: Path
    hdd_size: str
    shared_hdd: Path
    shared_hdd_size: str
    graphics: str
    binary: str
    rom: Optional[Path] = None
    pram: Optional[Path] = None
    cpu: Optional[str] = None
    cache_mode: CacheMode = CacheMode.WRITETHROUGH
    aio_mode: AioMode = AioMode.THREADS
    network_mode: NetworkMode = NetworkMode.USER
    bridge_name: str = "br0"
    tap_iface: Optional[str] = None
    mac_address: Optional[str] = None
    smb_dir: Optional[Path] = None
    nic_model: str = "dp83932"
    audio_backend: Optional[str] = None
    audio_latency: Optional[int] = None
    sound_device: Optional[str] = None
    asc_mode: Optional[str] = None
    tcg_thread_mode: Optional[str] = None
    tb_size: Optional[int] = None
    smp_cores: Optional[int] = None
    memory_backend: Optional[str] = None
    display_device: Optional[str] = None
    usb_enabled: bool = False
    floppy_readonly: bool = True
    scsi_vendor: str = "SEAGATE"
    scsi_serial_prefix: Optional[str] = None
    bus_id_overrides: Mapping[LogicalRole, int] = field(default_factory=lambda: MappingProxyType({}))
    extra_args: Tuple[str, ...] = ()
    passthrough: Tuple[str, ...] = ()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return the raw value of any key, recognised or not."""
        return self.params.get(key, default)


@dataclass(frozen=True)
class DeviceAddress:
    bus: BusKind
    bus_id: int
    metadata: Tuple[Tuple[str, str], ...] = ()

    def meta(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return dict(self.metadata).get(key, default)

    def describe(self) -> str:
        if self.bus is BusKind.IDE:
            return f"{self.meta('controller')} unit {self.meta('unit')}"
        return f"SCSI ID {self.bus_id}"


AddressPlan = Dict[LogicalRole, DeviceAddress]


@dataclass
class BootState:
    path: Path
    data: bytearray


@dataclass
class MediaPaths:
    installer: Optional[Path] = None
    extra_disk: Optional[Path] = None
    floppy: Optional[Path] = None


@dataclass
class LaunchOptions:
    media: MediaPaths = field(default_factory=MediaPaths)
    boot_from_installer: bool = False
    display: Optional[str] = None
    network_mode: Optional[NetworkMode] = None


@dataclass
class NetworkResource:
    mode: NetworkMode
    bridge_name: Optional[str] = None
    interface_name: Optional[str] = None
    mac_address: Optional[str] = None
    smb_dir: Optional[Path] = None
    socket_path: Optional[Path] = None
    helper: Optional[subprocess.Popen] = None
    state: NetworkState = NetworkState.UNPROVISIONED
