# tests/conftest.py
import sys
from pathlib import Path
from unittest.mock import MagicMock

# ---------------------------------------------------------
# Ensure project root is on PYTHONPATH BEFORE app imports
# ---------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# ---------------------------------------------------------
# The generated Prisma client is never needed by unit tests
# ---------------------------------------------------------
sys.modules.setdefault("prisma", MagicMock())
