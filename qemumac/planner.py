"""Assignment of storage roles to bus addresses."""

from __future__ import annotations

from typing import Dict, List, Optional

from qemumac.constants import SUPPORTED_ARCHES
from qemumac.exceptions import AddressConflictError
from qemumac.models import (
    ROLE_ORDER,
    AddressPlan,
    BusKind,
    Configuration,
    DeviceAddress,
    LogicalRole,
)

CORE_ROLES = (LogicalRole.OS_DISK, LogicalRole.SHARED_DISK, LogicalRole.INSTALLER_MEDIUM)

SCSI_PRODUCTS = {
    LogicalRole.OS_DISK: "QEMU_OS_DISK",
    LogicalRole.SHARED_DISK: "QEMU_SHARED",
    LogicalRole.INSTALLER_MEDIUM: "QEMU_CDROM",
    LogicalRole.EXTRA_DISK: "QEMU_EXTRA_DISK",
}


def _base_table(cfg: Configuration) -> Dict[LogicalRole, int]:
    priority = SUPPORTED_ARCHES[cfg.arch.value]["priority"]
    table = {role: priority[role.value] for role in CORE_ROLES}
    for role, bus_id in cfg.bus_id_overrides.items():
        if role in CORE_ROLES:
            table[role] = bus_id
    return table


def _pick_extra_id(valid_ids, taken: List[int], floor: int) -> Optional[int]:
    free = [bus_id for bus_id in valid_ids if bus_id not in taken]
    above = [bus_id for bus_id in free if bus_id > floor]
    if above:
        return above[0]
    return free[0] if free else None


def _address(cfg: Configuration, bus: BusKind, role: LogicalRole, bus_id: int) -> DeviceAddress:
    if bus is BusKind.IDE:
        metadata = (("controller", f"ide.{bus_id // 2}"), ("unit", str(bus_id % 2)))
    else:
        metadata = (("vendor", cfg.scsi_vendor), ("product", SCSI_PRODUCTS[role]))
        if cfg.scsi_serial_prefix:
            metadata += (("serial", f"{cfg.scsi_serial_prefix}{bus_id:04d}"),)
    return DeviceAddress(bus=bus, bus_id=bus_id, metadata=metadata)


def plan_addresses(
    cfg: Configuration,
    has_installer: bool,
    has_extra_disk: bool,
    boot_from_installer: bool = False,
) -> AddressPlan:
    """Map every present storage role to a distinct bus address.

    The OS disk and installer medium trade places when booting from the
    installer, so the boot target always sits on the highest-priority id.
    """
    profile = SUPPORTED_ARCHES[cfg.arch.value]
    bus = BusKind(profile["bus"])
    valid_ids = profile["bus_ids"]
    table = _base_table(cfg)

    for role, bus_id in table.items():
        if bus_id not in valid_ids:
            raise AddressConflictError(
                f"{role.value} bus id {bus_id} is out of range for {bus.value.upper()} "
                f"({valid_ids[0]}-{valid_ids[-1]})"
            )

    if boot_from_installer and has_installer:
        table[LogicalRole.OS_DISK], table[LogicalRole.INSTALLER_MEDIUM] = (
            table[LogicalRole.INSTALLER_MEDIUM],
            table[LogicalRole.OS_DISK],
        )

    present = [LogicalRole.OS_DISK, LogicalRole.SHARED_DISK]
    if has_installer:
        present.append(LogicalRole.INSTALLER_MEDIUM)

    assigned: Dict[LogicalRole, int] = {}
    for role in present:
        bus_id = table[role]
        for other, other_id in assigned.items():
            if other_id == bus_id:
                raise AddressConflictError(f"{role.value} and {other.value} both claim bus id {bus_id}")
        assigned[role] = bus_id

    if has_extra_disk:
        requested = cfg.bus_id_overrides.get(LogicalRole.EXTRA_DISK)
        taken = list(assigned.values())
        if requested is not None:
            if requested not in valid_ids:
                raise AddressConflictError(
                    f"extra_disk bus id {requested} is out of range for {bus.value.upper()} "
                    f"({valid_ids[0]}-{valid_ids[-1]})"
                )
            if requested in taken:
                raise AddressConflictError(f"extra_disk bus id {requested} is already in use")
            extra_id = requested
        else:
            extra_id = _pick_extra_id(valid_ids, taken, max(table.values()))
            if extra_id is None:
                raise AddressConflictError(f"No free {bus.value.upper()} id left for the extra disk")
        assigned[LogicalRole.EXTRA_DISK] = extra_id

    return {role: _address(cfg, bus, role, assigned[role]) for role in ROLE_ORDER if role in assigned}


def boot_target(plan: AddressPlan, boot_from_installer: bool) -> DeviceAddress:
    """Return the address the firmware should boot from."""
    if boot_from_installer and LogicalRole.INSTALLER_MEDIUM in plan:
        return plan[LogicalRole.INSTALLER_MEDIUM]
    return plan[LogicalRole.OS_DISK]
