import time
from datetime import datetime, timezone
from typing import Any


def now_ts() -> float:
    return time.time()


def iso_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def canonical_id(value: Any) -> str:
    # 3, "3" and 3.0 all address the same question
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()
