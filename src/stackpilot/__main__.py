"""Allow ``python -m stackpilot``."""

from __future__ import annotations

import sys

from stackpilot.cli import main

if __name__ == "__main__":
    sys.exit(main())
