import sys
import os
from pathlib import Path

# Ensure project root is on sys.path for `import app.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Default: keep the module-level app off the network and off disk unless a test opts in
os.environ.setdefault("AI_PROVIDER", "mock")
os.environ.setdefault("TRANSCRIPT_STORE", "memory")
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
