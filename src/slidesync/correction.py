"""Midpoint timestamp correction and ordering checks for transition events.

A slide change can only be detected on the first sampled frame at or after
it, so every reported time is late by somewhere between 0 and one sampling
interval.  Subtracting half the interval centres that error on zero.
"""
import logging

from slidesync.models import Confidence, RawTransitionRecord, TransitionEvent
from slidesync.timecode import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

VALID_SOURCE_IDS = (1, 2)


def correct_seconds(reported_s: float, interval_s: float) -> float:
    """Return ``max(0, reported_s - interval_s / 2)``; a non-positive interval means no shift."""
    shift = interval_s / 2 if interval_s > 0 else 0.0
    return max(0.0, reported_s - shift)


def correct_transitions(records: list[RawTransitionRecord], interval_s: float) -> list[TransitionEvent]:
    """Validate *records* and shift each one back by half the realized sampling interval.

    The same shift applies to every record.  Records without a parseable
    timestamp, a known deck or a positive page number are dropped with a
    warning rather than completed with guessed values.  Order is preserved.
    """
    events: list[TransitionEvent] = []
    for index, record in enumerate(records):
        reason = _rejection_reason(record)
        if reason is not None:
            logger.warning("dropping transition #%d (%s): %r", index, reason, record)
            continue

        corrected = correct_seconds(parse_timestamp(record.timestamp), interval_s)
        events.append(TransitionEvent(
            corrected_s=corrected,
            timestamp=format_timestamp(corrected),
            source_id=record.source_id,
            page_number=record.page_number,
            title=record.title or "",
            reasoning=record.reasoning or "",
            confidence=Confidence.normalize(record.confidence),
        ))
    return events


def find_ordering_issues(events: list[TransitionEvent]) -> list[str]:
    """Describe every way *events* departs from a plausible alignment.

    A valid alignment moves forward in time and switches from deck 1 to
    deck 2 at most once, never back.  Nothing is removed or reordered.
    """
    issues: list[str] = []
    for prev, cur in zip(events, events[1:]):
        if cur.corrected_s < prev.corrected_s:
            issues.append(
                f"time goes backwards: {prev.timestamp} (deck {prev.source_id} p{prev.page_number}) "
                f"-> {cur.timestamp} (deck {cur.source_id} p{cur.page_number})"
            )

    switches = 0
    for prev, cur in zip(events, events[1:]):
        if cur.source_id == prev.source_id:
            continue
        switches += 1
        if prev.source_id == 2 and cur.source_id == 1:
            issues.append(f"reverts from deck 2 to deck 1 at {cur.timestamp}")
    if switches > 1:
        issues.append(f"deck changes {switches} times; expected at most once")
    return issues


def is_time_ordered(events: list[TransitionEvent]) -> bool:
    return all(a.corrected_s <= b.corrected_s for a, b in zip(events, events[1:]))


def is_single_handoff(events: list[TransitionEvent]) -> bool:
    """True when the deck changes at most once and only from 1 to 2."""
    switches = [(a.source_id, b.source_id) for a, b in zip(events, events[1:]) if a.source_id != b.source_id]
    return len(switches) <= 1 and all(switch == (1, 2) for switch in switches)


def _rejection_reason(record: RawTransitionRecord) -> str | None:
    if parse_timestamp(record.timestamp or "") is None:
        return "unparseable timestamp"
    if record.source_id not in VALID_SOURCE_IDS:
        return "unknown deck"
    if record.page_number is None or record.page_number < 1:
        return "missing page number"
    return None
