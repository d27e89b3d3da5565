"""Emulator argument vector assembly."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from qemumac.models import (
    ROLE_ORDER,
    AddressPlan,
    AioMode,
    Arch,
    BootState,
    BusKind,
    Configuration,
    DeviceAddress,
    LogicalRole,
    MediaPaths,
    NetworkMode,
    NetworkResource,
)
from qemumac.utils import detect_image_format, log

DRIVE_IDS = {
    LogicalRole.OS_DISK: "hd0",
    LogicalRole.SHARED_DISK: "hd1",
    LogicalRole.INSTALLER_MEDIUM: "cd0",
    LogicalRole.EXTRA_DISK: "hd2",
}


def _role_paths(cfg: Configuration, media: MediaPaths) -> Dict[LogicalRole, Optional[Path]]:
    return {
        LogicalRole.OS_DISK: cfg.hdd,
        LogicalRole.SHARED_DISK: cfg.shared_hdd,
        LogicalRole.INSTALLER_MEDIUM: media.installer,
        LogicalRole.EXTRA_DISK: media.extra_disk,
    }


def _machine_group(cfg: Configuration, display: str) -> List[str]:
    if cfg.arch is Arch.M68K:
        machine = cfg.machine
        if cfg.asc_mode == "asc":
            machine += ",easc=off"
        args = [cfg.binary, "-M", machine, "-m", str(cfg.memory_mb), "-bios", str(cfg.rom)]
    else:
        machine = f"{cfg.machine},via=pmu" if cfg.machine == "mac99" else cfg.machine
        args = [cfg.binary, "-L", "pc-bios", "-M", machine, "-m", str(cfg.memory_mb)]
    args += ["-display", display]
    if cfg.display_device == "nubus-macfb":
        args += ["-device", "nubus-macfb"]
    return args


def _cpu_group(cfg: Configuration) -> List[str]:
    args: List[str] = []
    if cfg.cpu:
        args += ["-cpu", cfg.cpu]
    if cfg.smp_cores and cfg.smp_cores > 1:
        args += ["-smp", str(cfg.smp_cores)]
    accel = "tcg"
    if cfg.tcg_thread_mode == "multi":
        accel += ",thread=multi"
    if cfg.tb_size:
        accel += f",tb-size={cfg.tb_size}"
    args += ["-accel", accel]
    if cfg.memory_backend:
        args += [
            "-object",
            f"memory-backend-{cfg.memory_backend},size={cfg.memory_mb}M,id=ram0",
            "-machine",
            "memory-backend=ram0",
        ]
    return args


def _network_group(cfg: Configuration, network: NetworkResource) -> List[str]:
    if network.mode is NetworkMode.TAP:
        netdev = f"tap,id=net0,ifname={network.interface_name},script=no,downscript=no"
    elif network.mode is NetworkMode.PASST:
        netdev = f"stream,id=net0,server=off,addr.type=unix,addr.path={network.socket_path}"
    else:
        netdev = "user,id=net0"
        if network.smb_dir is not None:
            netdev += f",smb={network.smb_dir}"
    nic = f"nic,model={cfg.nic_model},netdev=net0"
    if network.mac_address:
        nic += f",macaddr={network.mac_address}"
    return ["-netdev", netdev, "-net", nic]


def storage_options(cfg: Configuration) -> str:
    """Return the ``cache=...,aio=...`` suffix shared by every storage drive."""
    options = f"cache={cfg.cache_mode.value},aio={cfg.aio_mode.value}"
    if cfg.aio_mode is AioMode.NATIVE:
        options += ",cache.direct=on"
    return options


def _storage_group(
    cfg: Configuration,
    role: LogicalRole,
    address: DeviceAddress,
    path: Path,
    boot_index: Optional[int],
) -> List[str]:
    drive_id = DRIVE_IDS[role]
    is_cd = role is LogicalRole.INSTALLER_MEDIUM
    media = "cdrom" if is_cd else "disk"
    image_format = "raw" if is_cd else detect_image_format(path)
    drive = f"file={path},media={media},format={image_format},if=none,id={drive_id},{storage_options(cfg)}"

    if address.bus is BusKind.SCSI:
        device = f"{'scsi-cd' if is_cd else 'scsi-hd'},scsi-id={address.bus_id},drive={drive_id}"
        if not is_cd:
            device += f",vendor={address.meta('vendor')},product={address.meta('product')}"
            serial = address.meta("serial")
            if serial:
                device += f",serial={serial}"
    else:
        device = (
            f"{'ide-cd' if is_cd else 'ide-hd'},bus={address.meta('controller')},"
            f"unit={address.meta('unit')},drive={drive_id}"
        )
    if boot_index is not None:
        device += f",bootindex={boot_index}"
    return ["-device", device, "-drive", drive]


def build_command(
    cfg: Configuration,
    plan: AddressPlan,
    boot: Optional[BootState],
    network: NetworkResource,
    media: MediaPaths,
    display: str = "sdl",
    boot_from_installer: bool = False,
) -> List[str]:
    """Assemble the full emulator argv. Output depends only on the inputs."""
    args = _machine_group(cfg, display)
    args += _cpu_group(cfg)

    boot_role = (
        LogicalRole.INSTALLER_MEDIUM
        if boot_from_installer and LogicalRole.INSTALLER_MEDIUM in plan
        else LogicalRole.OS_DISK
    )
    if cfg.arch is Arch.PPC:
        args += ["-boot", "d" if boot_role is LogicalRole.INSTALLER_MEDIUM else "c"]
    elif boot is not None:
        args += ["-drive", f"file={boot.path},format=raw,if=mtd"]

    args += ["-g", cfg.graphics]
    args += _network_group(cfg, network)

    paths = _role_paths(cfg, media)
    for role in ROLE_ORDER:
        if role not in plan:
            continue
        path = paths[role]
        if path is None:
            continue
        boot_index = None
        if cfg.arch is Arch.PPC and role is boot_role:
            boot_index = 0
        args += _storage_group(cfg, role, plan[role], path, boot_index)

    if media.floppy is not None:
        floppy = f"file={media.floppy},format=raw,if=floppy,index=0"
        if cfg.floppy_readonly:
            floppy += ",readonly=on"
        args += ["-drive", floppy]

    if cfg.audio_backend:
        audiodev = f"driver={cfg.audio_backend},id=audio0"
        if cfg.audio_latency:
            audiodev += f",timer-period={cfg.audio_latency}"
        args += ["-audiodev", audiodev]
        if cfg.sound_device:
            args += ["-device", f"{cfg.sound_device},audiodev=audio0"]
        else:
            args += ["-machine", "audiodev=audio0"]

    if cfg.usb_enabled:
        args.append("-usb")

    args += list(cfg.extra_args)
    return args


def describe_storage_modes(cfg: Configuration) -> None:
    """Log how the cache and aio settings combine."""
    if cfg.aio_mode is AioMode.NATIVE and cfg.cache_mode.value in {"writeback", "writethrough", "unsafe"}:
        log(
            "INFO",
            f"aio=native needs O_DIRECT; adding cache.direct=on alongside cache={cfg.cache_mode.value}",
        )
    else:
        log("DEBUG", f"Storage: cache={cfg.cache_mode.value}, aio={cfg.aio_mode.value}")
