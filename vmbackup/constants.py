"""Global constants and path configuration for VM-Backup-Runner."""

from __future__ import annotations

import os
import re
from pathlib import Path

HOME_DIR = Path.home()
DEFAULT_CONFIG_PATH = Path(
    os.environ.get("CONFIG_PATH", str(HOME_DIR / ".config" / "vm-backup-runner" / "settings.yaml"))
)
DEFAULT_SEARCH_DIR = HOME_DIR / "Documents"
DEFAULT_BACKUP_DIR = DEFAULT_SEARCH_DIR / "vxUTMBackups"

UTMCTL_BUNDLED_PATH = Path("/Applications/UTM.app/Contents/MacOS/utmctl")
QEMU_IMG_CANDIDATES = (
    Path("/opt/homebrew/bin/qemu-img"),
    Path("/usr/local/bin/qemu-img"),
)
DITTO_PATH = Path("/usr/bin/ditto")
ARCHIVER_CHOICES = {"auto", "ditto", "zip"}

TRUTHY = {"1", "true", "yes", "on"}
_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

BUNDLE_SUFFIX = ".utm"
DISK_SUFFIX = ".qcow2"
BUNDLE_CONFIG_NAME = "config.plist"
WORKING_DIR_PREFIX = ".vmbackup-"
ARCHIVE_SUFFIX = ".zip"
BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d_%H%M%S"
FALLBACK_VM_FILENAME = "vm"
INVALID_FILENAME_CHARS = set('/:\\?%*|"<>')

COPY_CHUNK_SIZE = 1024 * 1024  # 1 MiB

# Job progress ranges: copy 0-80%, archive 85-98%, 100% only after finalize.
COPY_PROGRESS_SHARE = 0.8
ARCHIVE_PROGRESS_START = 0.85
ARCHIVE_PROGRESS_END = 0.98
ARCHIVE_PROGRESS_STEP = 0.0005

ARCHIVE_POLL_INTERVAL = 0.2
PROCESS_POLL_INTERVAL = 0.1

CLEANUP_RETRIES = 12
CLEANUP_RETRY_DELAY = 0.2

UUID_LINE_RE = re.compile(r"^([0-9A-Fa-f-]{36})\s+([A-Za-z]+)\s+(.+)$")
SNAPSHOT_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
PERMISSION_DENIED_MARKER = "-1743"
