"""Pytest configuration for the TanyaAyomi test suite."""

from __future__ import annotations

import sys
from pathlib import Path


# ``app`` and ``tanyaayomi`` live at the repository root; make them importable
# when the project has not been installed with ``pip install -e .``.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
