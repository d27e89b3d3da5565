"""Launch supervision: one emulator session from validation to cleanup."""

from __future__ import annotations

import signal
import subprocess
import tempfile
from contextlib import ExitStack
from pathlib import Path
from typing import Dict, List, Optional

from qemumac.command import build_command, describe_storage_modes
from qemumac.constants import EXIT_COMMAND_NOT_FOUND, EXIT_INTERRUPTED, EXIT_SETUP_FAILURE
from qemumac.exceptions import EmulatorExitError, LauncherError, SessionInterrupted
from qemumac.models import (
    AddressPlan,
    Arch,
    BootState,
    Configuration,
    LaunchOptions,
    LaunchState,
    NetworkMode,
    NetworkResource,
    NetworkState,
)
from qemumac.network import NetworkManager
from qemumac.planner import boot_target, plan_addresses
from qemumac.pram import ensure_boot_state, write_boot_target
from qemumac.storage import prepare_disks, validate_media
from qemumac.utils import host_is_macos, log, tap_name_for

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGHUP, signal.SIGINT)


def default_display() -> str:
    return "cocoa" if host_is_macos() else "sdl"


class LaunchSession:
    """Runs a single emulator instance and guarantees network cleanup."""

    def __init__(
        self,
        cfg: Configuration,
        options: Optional[LaunchOptions] = None,
        network_manager: Optional[NetworkManager] = None,
    ) -> None:
        self.cfg = cfg
        self.options = options or LaunchOptions()
        self._network_manager = network_manager
        self.state = LaunchState.IDLE
        self.plan: Optional[AddressPlan] = None
        self.boot_state: Optional[BootState] = None
        self.network: Optional[NetworkResource] = None
        self.command: Optional[List[str]] = None
        self.process: Optional[subprocess.Popen] = None
        self._spawning = False
        self._cleaning_up = False
        self._pending_signals: List[int] = []

    @property
    def network_mode(self) -> NetworkMode:
        return self.options.network_mode or self.cfg.network_mode

    @property
    def display(self) -> str:
        return self.options.display or default_display()

    @property
    def booting_installer(self) -> bool:
        return self.options.boot_from_installer and self.options.media.installer is not None

    @property
    def network_manager(self) -> NetworkManager:
        if self._network_manager is None:
            self._network_manager = NetworkManager()
        return self._network_manager

    def _transition(self, state: LaunchState) -> None:
        log("DEBUG", f"Session {self.cfg.name}: {self.state.value} -> {state.value}")
        self.state = state

    # --------------------------------------------------------------- phases
    def validate(self) -> AddressPlan:
        """Check media and compute the address plan. No host side effects."""
        media = self.options.media
        if self.options.boot_from_installer and media.installer is None:
            log("WARN", "Boot from installer requested but no installer image given; booting the OS disk")
        validate_media(self.cfg, media)
        self.plan = plan_addresses(
            self.cfg,
            has_installer=media.installer is not None,
            has_extra_disk=media.extra_disk is not None,
            boot_from_installer=self.booting_installer,
        )
        for role, address in self.plan.items():
            log("INFO", f"{role.value}: {address.describe()}")
        self._transition(LaunchState.VALIDATED)
        return self.plan

    def _prepare_storage(self) -> None:
        describe_storage_modes(self.cfg)
        prepare_disks(self.cfg)
        if self.cfg.arch is Arch.M68K and self.cfg.pram is not None:
            assert self.plan is not None
            self.boot_state = ensure_boot_state(self.cfg.pram)
            write_boot_target(self.boot_state, boot_target(self.plan, self.booting_installer).bus_id)

    def preview_command(self) -> List[str]:
        """Build the argv a launch would use without touching the host."""
        plan = self.plan or self.validate()
        if self.cfg.arch is Arch.M68K and self.cfg.pram is not None:
            boot = BootState(path=self.cfg.pram, data=bytearray())
        else:
            boot = None
        network = NetworkResource(
            mode=self.network_mode,
            bridge_name=self.cfg.bridge_name,
            mac_address=self.cfg.mac_address,
            smb_dir=self.cfg.smb_dir,
            state=NetworkState.UNPROVISIONED,
        )
        if network.mode is NetworkMode.TAP:
            network.interface_name = self.cfg.tap_iface or tap_name_for(self.cfg.name)
        elif network.mode is NetworkMode.PASST:
            network.socket_path = Path(tempfile.gettempdir()) / f"qemu-passt-{self.cfg.name}" / "passt.socket"
        return build_command(
            self.cfg,
            plan,
            boot,
            network,
            self.options.media,
            display=self.display,
            boot_from_installer=self.booting_installer,
        )

    # -------------------------------------------------------------- signals
    def _on_signal(self, signum, frame) -> None:
        name = signal.Signals(signum).name
        if self._cleaning_up:
            log("WARN", f"{name} received during cleanup; finishing teardown first")
            return
        if self.process is not None and self.process.poll() is None:
            log("INFO", f"{name} received, forwarding to emulator (PID {self.process.pid})")
            self.process.send_signal(signum)
            return
        if self._spawning:
            log("INFO", f"{name} received while the emulator is starting; forwarding once it is up")
            self._pending_signals.append(signum)
            return
        if self.process is None:
            self._cleaning_up = True
            raise SessionInterrupted(signum)
        log("WARN", f"{name} received after the emulator exited; finishing teardown first")

    def _begin_cleanup(self) -> None:
        self._cleaning_up = True

    def _install_signal_handlers(self, stack: ExitStack) -> None:
        previous: Dict[int, object] = {}
        for signum in HANDLED_SIGNALS:
            previous[signum] = signal.signal(signum, self._on_signal)

        def _restore() -> None:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

        stack.callback(_restore)

    # ------------------------------------------------------------------ run
    def _spawn(self, command: List[str]) -> int:
        log("INFO", f"Starting emulator: {' '.join(command)}")
        self._spawning = True
        try:
            self.process = subprocess.Popen(command)
        except FileNotFoundError:
            log("ERROR", f"Emulator binary not found: {command[0]}")
            self._transition(LaunchState.FAILED)
            return EXIT_COMMAND_NOT_FOUND
        finally:
            self._spawning = False
        while self._pending_signals:
            self.process.send_signal(self._pending_signals.pop(0))
        self._transition(LaunchState.RUNNING)
        returncode = self.process.wait()
        if returncode < 0:
            returncode = 128 - returncode
        if returncode == 0:
            log("SUCCESS", f"Emulator for {self.cfg.name} exited normally")
        else:
            log("ERROR", str(EmulatorExitError(returncode)))
        self._transition(LaunchState.COMPLETED)
        return returncode

    def run(self) -> int:
        """Launch the emulator and return the exit code for the caller."""
        with ExitStack() as stack:
            self._install_signal_handlers(stack)
            try:
                self.validate()
                self._prepare_storage()
                self.network = self.network_manager.provision(self.cfg, self.network_mode)
                stack.callback(self.network_manager.teardown, self.network)
                stack.callback(self._begin_cleanup)
                self._transition(LaunchState.RESOURCES_READY)

                assert self.plan is not None
                self.command = build_command(
                    self.cfg,
                    self.plan,
                    self.boot_state,
                    self.network,
                    self.options.media,
                    display=self.display,
                    boot_from_installer=self.booting_installer,
                )
                self._transition(LaunchState.COMMAND_BUILT)
                return self._spawn(self.command)
            except SessionInterrupted as exc:
                self._cleaning_up = True
                log("WARN", f"{exc}; cleaning up")
                self._transition(LaunchState.FAILED)
                return EXIT_INTERRUPTED
            except LauncherError as exc:
                self._cleaning_up = True
                log("ERROR", f"{exc.phase}: {exc}")
                self._transition(LaunchState.FAILED)
                return EXIT_SETUP_FAILURE

