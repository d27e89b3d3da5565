"""Utility functions for qemu-mac-runner."""

from __future__ import annotations

import getpass
import hashlib
import os
import re
import subprocess
import sys
import time
from pathlib import Path
from typing import List, Optional

from qemumac import constants
from qemumac.constants import (
    IFNAME_MAX_LEN,
    QCOW2_SUFFIXES,
    QEMU_MAC_PREFIX,
    TAP_PREFIX,
)


def set_verbose(enabled: bool) -> None:
    constants._LOG_VERBOSE = enabled


def log(level: str, message: str) -> None:
    """Print a coloured ``[LEVEL] message`` line; DEBUG only when verbose."""
    if level == "DEBUG" and not constants._LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def host_is_macos() -> bool:
    return sys.platform == "darwin"


def current_user() -> str:
    return getpass.getuser()


def privileged(cmd: List[str]) -> List[str]:
    """Prefix a host networking command with sudo unless already root."""
    if os.geteuid() == 0:
        return list(cmd)
    return ["sudo", *cmd]


def wait_for_path(path: Path, attempts: int, interval: float) -> bool:
    """Poll for a filesystem path to show up (e.g., a helper's control socket)."""
    for attempt in range(attempts):
        if path.exists():
            return True
        if attempt < attempts - 1:
            time.sleep(interval)
    return path.exists()


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def deterministic_mac(seed: str) -> str:
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    octets = [*QEMU_MAC_PREFIX, digest[0], digest[1], digest[2]]
    return ":".join(f"{octet:02x}" for octet in octets)


def sanitize_name(value: str) -> str:
    """Strip everything but alphanumerics, dots, dashes and underscores."""
    return re.sub(r"[^0-9A-Za-z._-]", "", value)


def tap_name_for(session: str) -> str:
    """Derive a TAP interface name that fits the kernel's interface-name limit."""
    safe = sanitize_name(session) or "session"
    return f"{TAP_PREFIX}{safe}"[:IFNAME_MAX_LEN]


def detect_image_format(path: Path) -> str:
    if path.suffix.lower() in QCOW2_SUFFIXES:
        return "qcow2"
    return "raw"


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
