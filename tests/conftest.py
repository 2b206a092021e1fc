from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("AUDIT_LOG_ENABLED", "0")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
