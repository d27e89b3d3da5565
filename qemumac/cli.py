"""CLI entry points for qemu-mac-runner."""

from __future__ import annotations

import argparse
import dataclasses
import shlex
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from qemumac.config import load_config
from qemumac.constants import DISPLAY_TYPES, EXIT_SETUP_FAILURE
from qemumac.exceptions import LauncherError
from qemumac.models import Configuration, LaunchOptions, MediaPaths, NetworkMode
from qemumac.pram import describe_boot_state, load_boot_state
from qemumac.session import LaunchSession
from qemumac.utils import log, set_verbose


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (tuple, list)):
        return [_plain(item) for item in value]
    if isinstance(value, dict) or hasattr(value, "items"):
        return {_plain(key): _plain(item) for key, item in value.items()}
    return value


def config_as_dict(cfg: Configuration) -> Dict[str, Any]:
    """Resolved configuration as plain data, unset optional fields omitted."""
    data: Dict[str, Any] = {}
    for field in dataclasses.fields(cfg):
        if field.name == "params":
            continue
        value = getattr(cfg, field.name)
        if value is None or value == () or (field.name == "bus_id_overrides" and not value):
            continue
        data[field.name] = _plain(value)
    return data


def show_config(cfg: Configuration) -> None:
    """Print the resolved configuration as YAML."""
    print(yaml.safe_dump({"config": config_as_dict(cfg)}, sort_keys=False), end="", flush=True)


def dry_run(session: LaunchSession) -> None:
    command = session.preview_command()
    assert session.plan is not None
    report = {
        "config": session.cfg.name,
        "arch": session.cfg.arch.value,
        "network": session.network_mode.value,
        "display": session.display,
        "addresses": {role.value: address.describe() for role, address in session.plan.items()},
        "command": command,
    }
    print(yaml.safe_dump(report, sort_keys=False), end="", flush=True)
    log("INFO", f"Command line: {' '.join(shlex.quote(arg) for arg in command)}")
    log("INFO", "=== Dry-run complete (no emulator started) ===")


def inspect_pram(path: Path) -> int:
    try:
        state = load_boot_state(path)
    except LauncherError as exc:
        log("ERROR", str(exc))
        return EXIT_SETUP_FAILURE
    print(describe_boot_state(state), flush=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qemu-mac-runner",
        description="Launch a classic Macintosh under QEMU from a configuration file",
    )
    parser.add_argument("-C", "--config", type=Path, metavar="FILE", help="Configuration file (KEY=value lines)")
    parser.add_argument("-c", "--cdrom", type=Path, metavar="IMAGE", help="Installer / CD-ROM image")
    parser.add_argument("-b", "--boot-installer", action="store_true", help="Boot from the installer image")
    parser.add_argument("-a", "--additional-hdd", type=Path, metavar="IMAGE", help="Additional hard disk image")
    parser.add_argument("-f", "--floppy", type=Path, metavar="IMAGE", help="Floppy disk image")
    parser.add_argument("-d", "--display", choices=sorted(DISPLAY_TYPES), help="Display backend")
    parser.add_argument(
        "-N",
        "--network",
        choices=[mode.value for mode in NetworkMode],
        help="Network mode (overrides QEMU_NETWORK_TYPE)",
    )
    parser.add_argument("--show-config", action="store_true", help="Show resolved configuration and exit")
    parser.add_argument("--dry-run", action="store_true", help="Validate and print the emulator command, then exit")
    parser.add_argument("--inspect-pram", type=Path, metavar="FILE", help="Dump the boot fields of a PRAM file")
    parser.add_argument("--verbose", action="store_true", help="Show debug output")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        set_verbose(True)

    if args.inspect_pram is not None:
        return inspect_pram(args.inspect_pram)

    if args.config is None:
        parser.error("-C/--config is required")

    try:
        cfg = load_config(args.config)
    except LauncherError as exc:
        log("ERROR", f"{exc.phase}: {exc}")
        return EXIT_SETUP_FAILURE

    if args.show_config:
        show_config(cfg)
        return 0

    options = LaunchOptions(
        media=MediaPaths(installer=args.cdrom, extra_disk=args.additional_hdd, floppy=args.floppy),
        boot_from_installer=args.boot_installer,
        display=args.display,
        network_mode=NetworkMode(args.network) if args.network else None,
    )
    session = LaunchSession(cfg, options)
    log("INFO", f"Config: {cfg.name} | Arch: {cfg.arch.value} | Machine: {cfg.machine} | Memory: {cfg.memory_mb} MiB")

    try:
        if args.dry_run:
            dry_run(session)
            return 0
        return session.run()
    except LauncherError as exc:
        log("ERROR", f"{exc.phase}: {exc}")
        return EXIT_SETUP_FAILURE
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return EXIT_SETUP_FAILURE
