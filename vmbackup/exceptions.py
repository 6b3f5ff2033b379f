"""Custom exceptions for VM-Backup-Runner."""


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class ProcessCancelled(ManagerError):
    """Raised when an external process was terminated because its run was cancelled."""

    def __init__(self) -> None:
        super().__init__("Process cancelled")


class BackupError(ManagerError):
    """Base class for per-job backup failures."""


class UnavailableBundleError(BackupError):
    def __init__(self) -> None:
        super().__init__("VM bundle is unavailable for backup.")


class SafetyViolationError(BackupError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Safety check failed: {message}")


class CopyFailedError(BackupError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Copy failed: {message}")


class ArchiveFailedError(BackupError):
    def __init__(self, code: int, stderr: str) -> None:
        self.code = code
        self.stderr = stderr
        super().__init__(f"Archive failed (code {code}): {stderr}")


class BackupCancelled(BackupError):
    """Cooperative cancellation observed inside a backup job."""

    def __init__(self) -> None:
        super().__init__("Cancelled")


class QemuImgError(ManagerError):
    def __init__(self, code: int, stdout: str, stderr: str) -> None:
        self.code = code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"qemu-img failed (code {code}).\nstdout:\n{stdout}\nstderr:\n{stderr}")


class UTMCtlError(ManagerError):
    """Raised when utmctl is missing, fails, or prints output we cannot parse."""
