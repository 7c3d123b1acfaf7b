# conftest.py (repo root)
# Keep the repo root on sys.path for imports like bookkeeper.*, infra.*
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
root_str = str(ROOT)

if root_str not in sys.path:
    sys.path.insert(0, root_str)
