"""Configuration loading and validation for qemu-mac-runner."""

from __future__ import annotations

import copy
import shlex
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Optional, Type, TypeVar

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from qemumac.constants import (
    AIO_MODE_KEYS,
    ARCH_ALIASES,
    ASC_MODES,
    AUDIO_BACKENDS,
    BUS_ID_KEYS,
    CACHE_MODE_KEYS,
    CONFIG_KEY_RE,
    DEFAULT_BRIDGE_NAME,
    DEFAULT_SCSI_VENDOR,
    DEFAULT_SHARED_HDD_SIZE,
    DISK_SIZE_RE,
    DISPLAY_DEVICES,
    FALSY,
    GRAPHICS_RE,
    IFNAME_MAX_LEN,
    MAC_ADDRESS_RE,
    MEMORY_BACKENDS,
    PROFILES_ENV,
    RAM_SIZE_RE,
    RESOLUTION_PRESETS,
    SCSI_SERIAL_PREFIX_RE,
    SCSI_VENDOR_RE,
    SUPPORTED_ARCHES,
    TB_SIZE_RECOMMENDED,
    TCG_THREAD_MODES,
    TRUTHY,
)
from qemumac.exceptions import ConfigError
from qemumac.models import AioMode, Arch, CacheMode, Configuration, LogicalRole, NetworkMode
from qemumac.utils import get_env, log, sanitize_name

E = TypeVar("E")

# Every key the loader understands; anything else is passed through untouched.
RECOGNISED_KEYS = {
    "ARCH",
    "CONFIG_NAME",
    "QEMU_MACHINE",
    "QEMU_RAM",
    "QEMU_ROM",
    "QEMU_PRAM",
    "QEMU_HDD",
    "QEMU_HDD_SIZE",
    "QEMU_SHARED_HDD",
    "QEMU_SHARED_HDD_SIZE",
    "QEMU_GRAPHICS",
    "QEMU_CPU",
    "QEMU_BINARY",
    "QEMU_NETWORK_TYPE",
    "BRIDGE_NAME",
    "QEMU_TAP_IFACE",
    "QEMU_MAC_ADDR",
    "QEMU_USER_SMB_DIR",
    "QEMU_NETWORK_DEVICE",
    "QEMU_AUDIO_BACKEND",
    "QEMU_AUDIO_LATENCY",
    "QEMU_SOUND_DEVICE",
    "QEMU_ASC_MODE",
    "QEMU_TCG_THREAD_MODE",
    "QEMU_TB_SIZE",
    "QEMU_SMP_CORES",
    "QEMU_MEMORY_BACKEND",
    "QEMU_DISPLAY_DEVICE",
    "QEMU_RESOLUTION_PRESET",
    "QEMU_USB_ENABLED",
    "QEMU_FLOPPY_READONLY",
    "QEMU_SCSI_VENDOR",
    "QEMU_SCSI_SERIAL_PREFIX",
    "QEMU_EXTRA_ARGS",
    *CACHE_MODE_KEYS,
    *AIO_MODE_KEYS,
    *BUS_ID_KEYS.values(),
}

_PROFILE_OVERRIDABLE = {"binary", "machines", "nic_model", "default_network"}


def load_arch_profiles(profiles_path: Optional[Path] = None) -> Dict[str, dict]:
    """Return the architecture profiles, merged with an optional YAML override file.

    The override file maps an architecture to a subset of ``binary``,
    ``machines``, ``nic_model`` and ``default_network``::

        m68k:
          binary: /opt/qemu/bin/qemu-system-m68k
    """
    profiles = copy.deepcopy(SUPPORTED_ARCHES)
    if profiles_path is None:
        env_path = get_env(PROFILES_ENV)
        if not env_path:
            return profiles
        profiles_path = Path(env_path)
    if not profiles_path.exists():
        raise ConfigError(f"Machine profile file missing: {profiles_path}")
    try:
        data = yaml.safe_load(profiles_path.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read machine profile file {profiles_path}: {exc}")
    if not isinstance(data, dict):
        raise ConfigError(f"Machine profile file {profiles_path} must contain a mapping")
    for arch, overrides in data.items():
        if arch not in profiles:
            supported = ", ".join(sorted(profiles))
            raise ConfigError(f"Unknown architecture '{arch}' in {profiles_path}. Supported: {supported}")
        if not isinstance(overrides, dict):
            raise ConfigError(f"Profile '{arch}' in {profiles_path} must be a mapping")
        unknown = set(overrides) - _PROFILE_OVERRIDABLE
        if unknown:
            raise ConfigError(f"Profile '{arch}' sets unsupported field(s): {', '.join(sorted(unknown))}")
        if "machines" in overrides:
            overrides = dict(overrides, machines=tuple(overrides["machines"]))
        profiles[arch].update(overrides)
        log("DEBUG", f"Applied profile overrides for {arch} from {profiles_path}")
    return profiles


def _unquote(raw: str, source: str, lineno: int) -> str:
    raw = raw.strip()
    if not raw:
        return ""
    try:
        parts = shlex.split(raw, comments=True)
    except ValueError as exc:
        raise ConfigError(f"{source}:{lineno}: cannot parse value ({exc})")
    if len(parts) > 1:
        raise ConfigError(f"{source}:{lineno}: value must be quoted when it contains spaces")
    return parts[0] if parts else ""


def parse_config_text(text: str, source: str = "<config>") -> Dict[str, str]:
    """Parse ``KEY=value`` lines into a dict, preserving every key."""
    values: Dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("export "):
            stripped = stripped[len("export "):].lstrip()
        key, sep, raw = stripped.partition("=")
        key = key.strip()
        if not sep or not CONFIG_KEY_RE.match(key):
            raise ConfigError(f"{source}:{lineno}: expected KEY=value, got '{stripped}'")
        values[key] = _unquote(raw, source, lineno)
    return values


class _Checker:
    """Collects validation errors so they can be reported together."""

    def __init__(self, params: Dict[str, str]) -> None:
        self.params = params
        self.errors: List[str] = []

    def fail(self, message: str) -> None:
        self.errors.append(message)

    def text(self, key: str) -> Optional[str]:
        value = self.params.get(key)
        if value is None:
            return None
        value = value.strip()
        return value or None

    def first(self, keys) -> Optional[str]:
        for key in keys:
            value = self.text(key)
            if value is not None:
                return value
        return None

    def choice(self, key: str, allowed) -> Optional[str]:
        value = self.text(key)
        if value is None:
            return None
        if value not in allowed:
            self.fail(f"{key} must be one of {', '.join(sorted(allowed))} (got '{value}')")
            return None
        return value

    def enum(self, keys, enum_type: Type[E], default: E) -> E:
        value = self.first(keys)
        if value is None:
            return default
        try:
            return enum_type(value.lower())  # type: ignore[call-arg]
        except ValueError:
            allowed = ", ".join(member.value for member in enum_type)  # type: ignore[attr-defined]
            self.fail(f"{keys[0]} must be one of {allowed} (got '{value}')")
            return default

    def integer(self, key: str, min_val: int = 1, max_val: Optional[int] = None) -> Optional[int]:
        raw = self.text(key)
        if raw is None:
            return None
        try:
            value = int(raw)
        except ValueError:
            self.fail(f"{key} must be an integer (got '{raw}')")
            return None
        if value < min_val:
            self.fail(f"{key} must be >= {min_val} (got {value})")
            return None
        if max_val is not None and value > max_val:
            self.fail(f"{key} must be <= {max_val} (got {value})")
            return None
        return value

    def boolean(self, key: str, default: bool) -> bool:
        raw = self.text(key)
        if raw is None:
            return default
        if raw.lower() in TRUTHY:
            return True
        if raw.lower() in FALSY:
            return False
        self.fail(f"{key} must be a boolean (got '{raw}')")
        return default

    def size(self, key: str, default: str) -> str:
        raw = self.text(key)
        if raw is None:
            return default
        if not DISK_SIZE_RE.match(raw):
            self.fail(f"Invalid {key} '{raw}'. Use a number with optional suffix: K, M, G, T (e.g. '200M')")
            return default
        return raw

    def path(self, key: str) -> Optional[Path]:
        value = self.text(key)
        return Path(value).expanduser() if value is not None else None


def _resolve_arch(raw: Optional[str], profiles: Dict[str, dict]) -> Arch:
    if raw is None:
        raise ConfigError("ARCH is required (m68k or ppc)")
    lowered = raw.strip().lower()
    key = ARCH_ALIASES.get(lowered, lowered)
    if key not in profiles:
        supported = ", ".join(sorted(profiles))
        raise ConfigError(f"Unsupported ARCH '{raw}'. Supported: {supported}")
    return Arch(key)


def _parse_ram(checker: _Checker) -> int:
    raw = checker.text("QEMU_RAM")
    if raw is None:
        return 0
    match = RAM_SIZE_RE.match(raw)
    if not match or int(match.group(1)) <= 0:
        checker.fail(f"QEMU_RAM must be a size in MiB, optionally suffixed with M or G (got '{raw}')")
        return 0
    amount = int(match.group(1))
    if (match.group(2) or "M").upper() == "G":
        amount *= 1024
    return amount


def _parse_graphics(checker: _Checker) -> str:
    preset = checker.choice("QEMU_RESOLUTION_PRESET", RESOLUTION_PRESETS)
    if preset is not None:
        return RESOLUTION_PRESETS[preset]
    raw = checker.text("QEMU_GRAPHICS")
    if raw is None:
        return ""
    if not GRAPHICS_RE.match(raw):
        checker.fail(f"QEMU_GRAPHICS must look like WIDTHxHEIGHTxDEPTH (got '{raw}')")
    return raw


def _parse_bus_ids(checker: _Checker) -> Dict[LogicalRole, int]:
    overrides: Dict[LogicalRole, int] = {}
    for role_key, config_key in BUS_ID_KEYS.items():
        value = checker.integer(config_key, min_val=0)
        if value is not None:
            overrides[LogicalRole(role_key)] = value
    return overrides


def build_configuration(
    params: Dict[str, str],
    name: str = "session",
    profiles: Optional[Dict[str, dict]] = None,
) -> Configuration:
    """Validate raw parameters against the architecture schema."""
    if profiles is None:
        profiles = load_arch_profiles()
    arch = _resolve_arch(params.get("ARCH"), profiles)
    profile = profiles[arch.value]
    checker = _Checker(params)

    missing = [key for key in profile["required"] if checker.text(key) is None]
    if missing:
        checker.fail(f"missing required variable(s) for {arch.value}: {', '.join(missing)}")

    machine = checker.text("QEMU_MACHINE") or ""
    if machine and machine not in profile["machines"]:
        checker.fail(f"QEMU_MACHINE must be one of {', '.join(profile['machines'])} for {arch.value} (got '{machine}')")

    memory_mb = _parse_ram(checker)
    graphics = _parse_graphics(checker)

    cpu = checker.text("QEMU_CPU")
    if cpu and profile["cpu_models"] and cpu not in profile["cpu_models"]:
        checker.fail(f"QEMU_CPU must be one of {', '.join(profile['cpu_models'])} (got '{cpu}')")

    mac_address = checker.text("QEMU_MAC_ADDR")
    if mac_address is not None:
        mac_address = mac_address.lower()
        if not MAC_ADDRESS_RE.match(mac_address):
            checker.fail(f"QEMU_MAC_ADDR must look like 52:54:00:12:34:56 (got '{mac_address}')")

    tap_iface = checker.text("QEMU_TAP_IFACE")
    if tap_iface is not None and (len(tap_iface) > IFNAME_MAX_LEN or sanitize_name(tap_iface) != tap_iface):
        checker.fail(f"QEMU_TAP_IFACE must be at most {IFNAME_MAX_LEN} characters of [A-Za-z0-9._-] (got '{tap_iface}')")

    tb_size = checker.integer("QEMU_TB_SIZE")
    if tb_size is not None and not TB_SIZE_RECOMMENDED[0] <= tb_size <= TB_SIZE_RECOMMENDED[1]:
        low, high = TB_SIZE_RECOMMENDED
        log("WARN", f"QEMU_TB_SIZE={tb_size} is outside the recommended range ({low}-{high})")

    scsi_vendor = checker.text("QEMU_SCSI_VENDOR") or DEFAULT_SCSI_VENDOR
    if not SCSI_VENDOR_RE.match(scsi_vendor):
        checker.fail(f"QEMU_SCSI_VENDOR must be 1-8 uppercase letters, digits or spaces (got '{scsi_vendor}')")
    serial_prefix = checker.text("QEMU_SCSI_SERIAL_PREFIX")
    if serial_prefix is not None and not SCSI_SERIAL_PREFIX_RE.match(serial_prefix):
        checker.fail(f"QEMU_SCSI_SERIAL_PREFIX must be 2-4 uppercase letters or digits (got '{serial_prefix}')")

    extra_args_raw = checker.text("QEMU_EXTRA_ARGS") or ""
    try:
        extra_args = tuple(shlex.split(extra_args_raw))
    except ValueError as exc:
        checker.fail(f"QEMU_EXTRA_ARGS cannot be parsed: {exc}")
        extra_args = ()

    default_network = NetworkMode(profile["default_network"])
    network_mode = checker.enum(("QEMU_NETWORK_TYPE",), NetworkMode, default_network)
    bridge_name = checker.text("BRIDGE_NAME") or DEFAULT_BRIDGE_NAME

    config_kwargs = dict(
        arch=arch,
        name=checker.text("CONFIG_NAME") or name,
        params=MappingProxyType(dict(params)),
        machine=machine,
        memory_mb=memory_mb,
        hdd=checker.path("QEMU_HDD") or Path(),
        hdd_size=checker.size("QEMU_HDD_SIZE", profile["default_hdd_size"]),
        shared_hdd=checker.path("QEMU_SHARED_HDD") or Path(),
        shared_hdd_size=checker.size("QEMU_SHARED_HDD_SIZE", DEFAULT_SHARED_HDD_SIZE),
        graphics=graphics,
        binary=checker.text("QEMU_BINARY") or profile["binary"],
        rom=checker.path("QEMU_ROM"),
        pram=checker.path("QEMU_PRAM"),
        cpu=cpu,
        cache_mode=checker.enum(CACHE_MODE_KEYS, CacheMode, CacheMode.WRITETHROUGH),
        aio_mode=checker.enum(AIO_MODE_KEYS, AioMode, AioMode.THREADS),
        network_mode=network_mode,
        bridge_name=bridge_name,
        tap_iface=tap_iface,
        mac_address=mac_address,
        smb_dir=checker.path("QEMU_USER_SMB_DIR"),
        nic_model=checker.text("QEMU_NETWORK_DEVICE") or profile["nic_model"],
        audio_backend=checker.choice("QEMU_AUDIO_BACKEND", AUDIO_BACKENDS),
        audio_latency=checker.integer("QEMU_AUDIO_LATENCY"),
        sound_device=checker.text("QEMU_SOUND_DEVICE"),
        asc_mode=checker.choice("QEMU_ASC_MODE", ASC_MODES),
        tcg_thread_mode=checker.choice("QEMU_TCG_THREAD_MODE", TCG_THREAD_MODES),
        tb_size=tb_size,
        smp_cores=checker.integer("QEMU_SMP_CORES"),
        memory_backend=checker.choice("QEMU_MEMORY_BACKEND", MEMORY_BACKENDS),
        display_device=checker.choice("QEMU_DISPLAY_DEVICE", DISPLAY_DEVICES),
        usb_enabled=checker.boolean("QEMU_USB_ENABLED", False),
        floppy_readonly=checker.boolean("QEMU_FLOPPY_READONLY", True),
        scsi_vendor=scsi_vendor,
        scsi_serial_prefix=serial_prefix,
        bus_id_overrides=MappingProxyType(_parse_bus_ids(checker)),
        extra_args=extra_args,
        passthrough=tuple(sorted(key for key in params if key not in RECOGNISED_KEYS)),
    )

    if checker.errors:
        details = "\n".join(f"  - {error}" for error in checker.errors)
        raise ConfigError(f"Config '{name}' is invalid:\n{details}")

    cfg = Configuration(**config_kwargs)
    if cfg.passthrough:
        log("DEBUG", f"Passing through unrecognised keys: {', '.join(cfg.passthrough)}")
    return cfg


def load_config(config_path: Path, profiles: Optional[Dict[str, dict]] = None) -> Configuration:
    """Read, parse and validate a configuration file."""
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")
    if not config_path.is_file():
        raise ConfigError(f"Configuration path must point to a regular file: {config_path}")
    try:
        text = config_path.read_text()
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read configuration file {config_path}: {exc}")
    log("INFO", f"Loading configuration from: {config_path}")
    params = parse_config_text(text, str(config_path))
    name = config_path.name[: -len(".conf")] if config_path.name.endswith(".conf") else config_path.stem
    return build_configuration(params, name=name, profiles=profiles)
