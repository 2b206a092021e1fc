from __future__ import annotations

import time
from datetime import datetime, timezone

def now_ts() -> int:
    return int(time.time())

def day_of(ts: int) -> str:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).date().isoformat()
