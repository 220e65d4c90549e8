"""Conversion between seconds and the ``MM:SS`` labels shown to the model and the user."""
import math


def format_timestamp(seconds: float) -> str:
    """Render *seconds* as zero-padded ``MM:SS``.

    Fractions are floored. Minutes are not wrapped into hours, so a 75 minute
    recording yields ``"75:03"``; :func:`parse_timestamp` reads that back.
    """
    total = max(0, math.floor(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes:02d}:{secs:02d}"


def parse_timestamp(label: str) -> float | None:
    """Parse ``MM:SS`` or ``HH:MM:SS`` into seconds.

    Returns None when *label* is empty or not in either form.  Seconds may
    carry a fraction (``"01:02.5"``); minutes and hours must be integers.
    """
    if not label:
        return None
    parts = [p.strip() for p in label.strip().split(":")]
    if len(parts) not in (2, 3):
        return None
    try:
        *whole, secs = parts
        numbers = [int(p) for p in whole]
        seconds = float(secs)
    except ValueError:
        return None
    if any(n < 0 for n in numbers) or not math.isfinite(seconds) or seconds < 0:
        return None

    if len(numbers) == 1:
        return numbers[0] * 60 + seconds
    return numbers[0] * 3600 + numbers[1] * 60 + seconds
