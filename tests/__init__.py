"""Test package for the worldstate bot.

Puts ``src`` on ``sys.path`` so the ``worldstate_bot`` package imports
without an editable install.
"""

import sys
from pathlib import Path

src_path = Path(__file__).resolve().parents[1] / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))
