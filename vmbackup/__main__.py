"""Allow ``python -m vmbackup``."""

from vmbackup.cli import main

raise SystemExit(main())
