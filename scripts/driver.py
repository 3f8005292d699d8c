"""Thin launcher so the CLI runs from a source checkout: `python scripts/driver.py <cmd> ...`."""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from scriptwriter.cli import main  # noqa: E402

if __name__ == "__main__":
    raise SystemExit(main())
