"""Host network provisioning for emulator sessions (bridge + TAP, passt, user)."""

from __future__ import annotations

import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from qemumac.constants import PASST_SOCKET_ATTEMPTS, PASST_SOCKET_INTERVAL
from qemumac.exceptions import ResourceSetupError
from qemumac.models import Configuration, NetworkMode, NetworkResource, NetworkState
from qemumac.utils import (
    current_user,
    deterministic_mac,
    host_is_macos,
    log,
    privileged,
    run,
    sanitize_name,
    tap_name_for,
    wait_for_path,
)

_FLAGS_RE = re.compile(r"<([^>]*)>")


class NetworkManager:
    """Creates and removes the host-side resources backing the guest NIC.

    The bridge is shared by every session and is never removed. TAP
    interfaces belong to a single session and are torn down when it ends.
    """

    def __init__(self, user: Optional[str] = None) -> None:
        self.user = user or current_user()

    # ----------------------------------------------------------- host queries
    def _ip(self, *args: str) -> subprocess.CompletedProcess:
        cmd = privileged(["ip", *args])
        try:
            return run(cmd, capture_output=True)
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or "").strip() or f"exit status {exc.returncode}"
            raise ResourceSetupError(f"'{' '.join(cmd)}' failed: {detail}") from exc
        except OSError as exc:
            raise ResourceSetupError(f"'{' '.join(cmd)}' could not be started: {exc}") from exc

    def _show(self, name: str) -> Optional[str]:
        try:
            result = run(["ip", "link", "show", name], check=False, capture_output=True)
        except OSError as exc:
            raise ResourceSetupError(f"Cannot query network interfaces: {exc}") from exc
        if result.returncode != 0:
            return None
        return result.stdout or ""

    def link_exists(self, name: str) -> bool:
        return self._show(name) is not None

    def _link_is_up(self, name: str) -> bool:
        output = self._show(name) or ""
        match = _FLAGS_RE.search(output)
        flags = match.group(1).split(",") if match else []
        return "UP" in flags or "state UP" in output

    # ----------------------------------------------------------------- bridge
    def ensure_bridge(self, bridge_name: str) -> None:
        """Create the bridge if needed and make sure it is up."""
        if not self.link_exists(bridge_name):
            log("INFO", f"Creating bridge {bridge_name}")
            try:
                self._ip("link", "add", "name", bridge_name, "type", "bridge")
            except ResourceSetupError:
                if not self.link_exists(bridge_name):
                    raise
                log("INFO", f"Bridge {bridge_name} was created concurrently; reusing it")
            self._ip("link", "set", bridge_name, "up")
            return
        if not self._link_is_up(bridge_name):
            log("INFO", f"Bringing bridge {bridge_name} up")
            self._ip("link", "set", bridge_name, "up")
        else:
            log("DEBUG", f"Bridge {bridge_name} already exists and is up")

    # -------------------------------------------------------------------- tap
    def setup(
        self,
        bridge_name: str,
        interface_hint: str,
        mac: Optional[str] = None,
        interface_name: Optional[str] = None,
    ) -> NetworkResource:
        """Provision a TAP interface attached to ``bridge_name``."""
        if host_is_macos():
            raise ResourceSetupError("TAP networking requires a Linux host; use user or passt mode")
        name = interface_name or tap_name_for(interface_hint)
        resource = NetworkResource(
            mode=NetworkMode.TAP,
            bridge_name=bridge_name,
            interface_name=name,
            mac_address=mac,
        )
        self.ensure_bridge(bridge_name)
        resource.state = NetworkState.BRIDGE_READY

        if self.link_exists(name):
            log("WARN", f"Removing stale interface {name} left by an earlier session")
            self._remove_interface(name, bridge_name)

        undo: List[Tuple[str, Callable[[], object]]] = []
        try:
            self._ip("tuntap", "add", "dev", name, "mode", "tap", "user", self.user)
            undo.append(("delete", lambda: self._ip("tuntap", "del", "dev", name, "mode", "tap")))
            self._ip("link", "set", name, "up")
            undo.append(("down", lambda: self._ip("link", "set", name, "down")))
            self._ip("link", "set", name, "master", bridge_name)
        except Exception:
            for step, action in reversed(undo):
                try:
                    action()
                except Exception as exc:
                    log("WARN", f"Rollback step '{step}' for {name} failed: {exc}")
            resource.state = NetworkState.CLEANED
            raise

        resource.state = NetworkState.INTERFACE_ATTACHED
        log("SUCCESS", f"TAP interface {name} attached to {bridge_name}")
        return resource

    def _remove_interface(self, name: str, bridge_name: Optional[str]) -> None:
        steps = []
        if bridge_name:
            steps.append(("detach", ("link", "set", name, "nomaster")))
        steps.append(("down", ("link", "set", name, "down")))
        steps.append(("delete", ("tuntap", "del", "dev", name, "mode", "tap")))
        for step, args in steps:
            try:
                if not self.link_exists(name):
                    return
                self._ip(*args)
                log("DEBUG", f"Interface {name}: {step} done")
            except Exception as exc:
                log("WARN", f"Interface {name}: {step} failed: {exc}")

    # ------------------------------------------------------------------ passt
    def setup_passt(self, session_name: str, mac: Optional[str] = None) -> NetworkResource:
        """Start a userspace passt helper and wait for its socket."""
        socket_dir = Path(tempfile.mkdtemp(prefix=f"qemu-passt-{sanitize_name(session_name) or 'session'}-"))
        socket_path = socket_dir / "passt.socket"
        resource = NetworkResource(mode=NetworkMode.PASST, mac_address=mac, socket_path=socket_path)
        cmd = ["passt", "--socket", str(socket_path), "--foreground"]
        log("DEBUG", f"Running: {' '.join(cmd)}")
        try:
            resource.helper = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as exc:
            shutil.rmtree(socket_dir, ignore_errors=True)
            raise ResourceSetupError(f"Failed to start passt: {exc}") from exc

        try:
            if not wait_for_path(socket_path, PASST_SOCKET_ATTEMPTS, PASST_SOCKET_INTERVAL):
                raise ResourceSetupError(f"passt socket {socket_path} did not appear")
        except Exception:
            self._stop_helper(resource)
            shutil.rmtree(socket_dir, ignore_errors=True)
            resource.state = NetworkState.CLEANED
            raise

        resource.state = NetworkState.INTERFACE_ATTACHED
        log("SUCCESS", f"passt helper ready on {socket_path}")
        return resource

    def _stop_helper(self, resource: NetworkResource) -> None:
        proc = resource.helper
        if proc is None:
            return
        try:
            if proc.poll() is None:
                proc.terminate()
                try:
                    proc.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.wait(timeout=5)
        except (OSError, subprocess.TimeoutExpired) as exc:
            log("WARN", f"Failed to stop passt helper: {exc}")
        resource.helper = None

    # ------------------------------------------------------------------- user
    def setup_user(self, smb_dir: Optional[Path] = None, mac: Optional[str] = None) -> NetworkResource:
        """User-mode networking needs nothing on the host."""
        if smb_dir is not None and not smb_dir.is_dir():
            raise ResourceSetupError(f"SMB share directory does not exist: {smb_dir}")
        log("INFO", "Using user-mode networking")
        return NetworkResource(
            mode=NetworkMode.USER,
            mac_address=mac,
            smb_dir=smb_dir,
            state=NetworkState.INTERFACE_ATTACHED,
        )

    # ------------------------------------------------------------- dispatcher
    def provision(self, cfg: Configuration, mode: NetworkMode) -> NetworkResource:
        mac = cfg.mac_address or deterministic_mac(cfg.name)
        if mode is NetworkMode.TAP:
            return self.setup(cfg.bridge_name, cfg.name, mac=mac, interface_name=cfg.tap_iface)
        if mode is NetworkMode.PASST:
            return self.setup_passt(cfg.name, mac=mac)
        return self.setup_user(cfg.smb_dir, mac=mac)

    # --------------------------------------------------------------- teardown
    def teardown(self, resource: NetworkResource) -> None:
        """Release everything ``resource`` holds. Never raises."""
        if resource.state is NetworkState.CLEANED:
            return
        try:
            if resource.mode is NetworkMode.TAP and resource.interface_name:
                log("INFO", f"Cleaning up TAP interface {resource.interface_name}")
                self._remove_interface(resource.interface_name, resource.bridge_name)
            elif resource.mode is NetworkMode.PASST:
                log("INFO", "Stopping passt helper")
                self._stop_helper(resource)
                if resource.socket_path is not None:
                    shutil.rmtree(resource.socket_path.parent, ignore_errors=True)
        except Exception as exc:
            log("WARN", f"Network teardown incomplete: {exc}")
        resource.state = NetworkState.CLEANED
