"""Disk image and media preparation."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List

from qemumac.exceptions import ConfigError, StorageError
from qemumac.models import Arch, Configuration, MediaPaths
from qemumac.utils import detect_image_format, ensure_directory, log, run


def validate_media(cfg: Configuration, media: MediaPaths) -> None:
    """Check that every file the session only reads is present.

    Runs before any host side effect so a typo never leaves a half-built
    network behind.
    """
    problems: List[str] = []
    if cfg.arch is Arch.M68K and cfg.rom is not None and not cfg.rom.is_file():
        problems.append(f"ROM file not found: {cfg.rom}")
    checks = (
        ("Installer image", media.installer),
        ("Additional disk", media.extra_disk),
        ("Floppy image", media.floppy),
    )
    for label, path in checks:
        if path is not None and not path.is_file():
            problems.append(f"{label} not found: {path}")
    if cfg.smb_dir is not None and not cfg.smb_dir.is_dir():
        problems.append(f"SMB share directory not found: {cfg.smb_dir}")
    if problems:
        raise ConfigError("\n".join(problems))


def create_disk_image(path: Path, size: str) -> None:
    image_format = detect_image_format(path)
    ensure_directory(path.parent)
    log("INFO", f"Creating {image_format} disk image {path} ({size})")
    try:
        run(["qemu-img", "create", "-f", image_format, str(path), size], capture_output=True)
    except FileNotFoundError as exc:
        raise StorageError("qemu-img not found; install QEMU tools to create disk images") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip() or f"exit status {exc.returncode}"
        raise StorageError(f"Failed to create disk image {path}: {detail}") from exc


def prepare_disks(cfg: Configuration) -> List[Path]:
    """Create the OS and shared disk images that do not exist yet."""
    created: List[Path] = []
    for path, size in ((cfg.hdd, cfg.hdd_size), (cfg.shared_hdd, cfg.shared_hdd_size)):
        if path.exists():
            log("DEBUG", f"Using existing disk image {path}")
            continue
        create_disk_image(path, size)
        created.append(path)
    return created
