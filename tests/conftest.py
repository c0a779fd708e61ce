import sys
from pathlib import Path


# Scripts live in python/; make them importable without installing the project.
SCRIPTS_ROOT = Path(__file__).resolve().parents[1] / "python"
if str(SCRIPTS_ROOT) not in sys.path:
    sys.path.insert(0, str(SCRIPTS_ROOT))
