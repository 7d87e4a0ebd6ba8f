from __future__ import annotations

import re

_TIMEFRAME_RE = re.compile(r"^(\d+)([smhdw])$")


def timeframe_to_ms(tf: str) -> int:
    m = _TIMEFRAME_RE.match(tf.strip())
    if not m:
        raise ValueError(f"Invalid interval: {tf!r} (expected e.g. '1d')")

    n = int(m.group(1))
    unit = m.group(2)

    mult = {
        "s": 1_000,
        "m": 60_000,
        "h": 3_600_000,
        "d": 86_400_000,
        "w": 604_800_000,
    }[unit]
    return n * mult
