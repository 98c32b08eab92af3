"""Run one poll → extract → download cycle from a source checkout."""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure src/ is on sys.path when running as a script
SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from reestr_mailer.cli import main


if __name__ == "__main__":
    sys.exit(main())
