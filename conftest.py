import os
import sys
from pathlib import Path

# Default env for engine settings in tests.
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("NOTIFY_ENV", "test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Make the package importable without an editable install.
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
