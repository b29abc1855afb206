"""Test package initialisation for Dispatch Navigator."""

import os
from pathlib import Path
import sys

# Ensure the repository root is importable when tests run from an isolated
# working directory; the project uses top-level modules such as ``geo``.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Widgets are created in tests, so never require a display.
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
