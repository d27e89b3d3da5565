"""qemu-mac-runner package."""

__all__ = [
    "cli",
    "command",
    "config",
    "constants",
    "exceptions",
    "models",
    "network",
    "planner",
    "pram",
    "session",
    "storage",
    "utils",
]
