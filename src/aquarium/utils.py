from __future__ import annotations

import json
import math
import os
import time
from datetime import datetime, timezone
from typing import Any, Optional


# ============================================================
# Logging
# ============================================================
def log(msg: str) -> None:
    ts = datetime.now().strftime("%H:%M:%S")
    print(f"[{ts}] {msg}", flush=True)


# ============================================================
# Helpers
# ============================================================
def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> float:
    return time.monotonic() * 1000.0


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def ensure_dir_for_file(path: str) -> None:
    d = os.path.dirname(os.path.abspath(path))
    if d and not os.path.exists(d):
        os.makedirs(d, exist_ok=True)


def deep_copy_jsonable(obj: Any) -> Any:
    # fastest safe-ish way for jsonable structures
    return json.loads(json.dumps(obj))


def extract_number(value: Any) -> Optional[float]:
    # accepts raw numbers and {"value": x} envelopes; NaN and bools are rejected
    if isinstance(value, dict) and "value" in value:
        value = value["value"]
    if isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(f) else f
