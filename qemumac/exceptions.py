"""Custom exceptions for qemu-mac-runner."""


class LauncherError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""

    phase = "launch"


class ConfigError(LauncherError):
    """A configuration parameter is missing or malformed."""

    phase = "config"


class AddressConflictError(LauncherError):
    """No bus id is available for a storage role."""

    phase = "planning"


class EncodingError(LauncherError):
    """The PRAM boot-state buffer cannot be read or encoded."""

    phase = "boot-state"


class StorageError(LauncherError):
    """A disk image could not be prepared."""

    phase = "storage"


class ResourceSetupError(LauncherError):
    """Host network resources could not be provisioned."""

    phase = "network"


class EmulatorExitError(LauncherError):
    """The emulator exited with a non-zero status."""

    phase = "emulator"

    def __init__(self, returncode: int) -> None:
        super().__init__(f"Emulator exited with status {returncode}")
        self.returncode = returncode


class SessionInterrupted(LauncherError):
    """A termination signal arrived before the emulator was started."""

    phase = "launch"

    def __init__(self, signum: int) -> None:
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum
