"""vm-backup-runner package."""

__all__ = [
    "archiver",
    "cancellation",
    "cli",
    "config",
    "constants",
    "copier",
    "discovery",
    "exceptions",
    "inventory",
    "models",
    "pipeline",
    "process",
    "runtime",
    "safety",
    "snapshots",
    "status",
    "utils",
    "utmctl",
]
