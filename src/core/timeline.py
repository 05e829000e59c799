"""
Timeline reconstruction for a single job.

Given a job's stage-transition events (sorted by ``created_at``) and its time
window, rebuild the sequence of active ``stage`` intervals and idle ``wait``
intervals between them.

Each event marks the moment a stage's work ended. The stage is assumed to
have run for exactly its (sanitized) recorded duration immediately before
that moment; any time between the previous event and that start is waiting.

Guarantees:
- Intervals are contiguous and cover ``[window_start, window_end)`` exactly
- Zero-length intervals are never emitted
- ``active_seconds + waiting_seconds == total_seconds``
- Malformed events (bad labels, corrupt or missing durations, overlapping or
  out-of-order timestamps) degrade the result, never fail the call
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from src.core.durations import is_corrupt, resolve_stage_label, sanitize
from src.core.errors import PreconditionViolation
from src.core.store import (
    TOTAL_KEY,
    WAIT_LABEL,
    Interval,
    JobWindow,
    StageDurationMap,
    StageEvent,
    Timeline,
    TimelineSummary,
)

logger = logging.getLogger(__name__)


def _whole_seconds(dt: datetime) -> datetime:
    return dt.replace(microsecond=0)


class _IntervalBuilder:
    """
    Appends intervals behind a cursor that only moves forward.

    Every interval is clipped to ``[cursor, window_end]`` so overlapping or
    out-of-window data cannot produce overlaps or negative durations.
    """

    def __init__(self, window_start: datetime, window_end: datetime):
        self.cursor = window_start
        self.window_end = window_end
        self.intervals: List[Interval] = []

    def emit(
        self,
        kind: str,
        label: str,
        start: datetime,
        end: datetime,
        staff_name: Optional[str] = None,
        is_redo: bool = False,
    ) -> None:
        start = max(start, self.cursor)
        end = min(end, self.window_end)
        if end <= start:
            return

        self.intervals.append(
            Interval(
                kind=kind,  # type: ignore[arg-type]
                label=label,
                start=start,
                end=end,
                duration_seconds=int((end - start).total_seconds()),
                staff_name=staff_name,
                is_redo=is_redo,
            )
        )
        self.cursor = end

    def advance(self, instant: datetime) -> None:
        self.cursor = max(self.cursor, min(instant, self.window_end))


def _check_preconditions(
    events: Sequence[StageEvent], window_start: datetime, window_end: datetime
) -> None:
    if window_end < window_start:
        raise PreconditionViolation(
            f"Window end {window_end.isoformat()} precedes start {window_start.isoformat()}"
        )
    for earlier, later in zip(events, events[1:]):
        if later.created_at < earlier.created_at:
            raise PreconditionViolation(
                f"Events out of order: {later.created_at.isoformat()} "
                f"after {earlier.created_at.isoformat()}"
            )


def summarize_stage_durations(events: Iterable[StageEvent]) -> StageDurationMap:
    """
    Accumulate sanitized durations per resolved stage label.

    Stages revisited after a redo accumulate additively. Stages whose total
    is zero are kept here; :meth:`Timeline.display_stage_durations` hides
    them.
    """
    durations: StageDurationMap = defaultdict(int)
    total = 0
    for event in events:
        seconds = sanitize(event.duration_seconds)
        durations[resolve_stage_label(event.previous_stage, event.new_stage)] += seconds
        total += seconds

    result = dict(durations)
    result[TOTAL_KEY] = total
    return result


def reconstruct(
    events: Sequence[StageEvent],
    window_start: datetime,
    window_end: datetime,
    *,
    order_id: Optional[str] = None,
    validate: bool = False,
) -> Timeline:
    """
    Rebuild a job's stage/wait timeline.

    Parameters
    ----------
    events : Sequence[StageEvent]
        The job's events in ascending ``created_at`` order
    window_start : datetime
        Job creation instant
    window_end : datetime
        ``updated_at`` for completed jobs, the evaluation instant otherwise
    order_id : Optional[str]
        Job identifier; defaults to the first event's ``order_id``
    validate : bool
        Raise :class:`PreconditionViolation` for unsorted events or an
        inverted window instead of silently degrading (default False)

    Returns
    -------
    Timeline
        Intervals, summary and per-stage durations. Instants are truncated
        to whole seconds.
    """
    if validate:
        _check_preconditions(events, window_start, window_end)

    window_start = _whole_seconds(window_start)
    window_end = _whole_seconds(window_end)
    if order_id is None and events:
        order_id = events[0].order_id

    builder = _IntervalBuilder(window_start, window_end)
    sanitized_count = 0

    for event in events:
        if is_corrupt(event.duration_seconds):
            sanitized_count += 1

        stage_seconds = int(sanitize(event.duration_seconds))
        logged_at = _whole_seconds(event.created_at)
        stage_start = logged_at - timedelta(seconds=stage_seconds)

        builder.emit("wait", WAIT_LABEL, builder.cursor, stage_start)

        # Zero-duration events are "started" markers, not work
        if stage_seconds > 0:
            builder.emit(
                "stage",
                resolve_stage_label(event.previous_stage, event.new_stage),
                stage_start,
                logged_at,
                staff_name=event.staff_name,
                is_redo=event.is_redo,
            )

        builder.advance(logged_at)

    builder.emit("wait", WAIT_LABEL, builder.cursor, window_end)

    intervals = builder.intervals
    summary = TimelineSummary(
        total_seconds=max(0, int((window_end - window_start).total_seconds())),
        active_seconds=sum(i.duration_seconds for i in intervals if i.kind == "stage"),
        waiting_seconds=sum(i.duration_seconds for i in intervals if i.kind == "wait"),
    )

    if sanitized_count:
        logger.warning(
            f"Discarded {sanitized_count} corrupt duration(s) for order {order_id}"
        )
    logger.debug(
        f"Reconstructed order {order_id}: {len(intervals)} intervals, "
        f"active={summary.active_seconds}s, waiting={summary.waiting_seconds}s"
    )

    return Timeline(
        order_id=order_id,
        window_start=window_start,
        window_end=window_end,
        intervals=intervals,
        summary=summary,
        stage_durations=summarize_stage_durations(events),
        sanitized_count=sanitized_count,
    )


def reconstruct_job(
    events: Sequence[StageEvent],
    window: JobWindow,
    now: datetime,
    *,
    order_id: Optional[str] = None,
    validate: bool = False,
) -> Timeline:
    """Reconstruct using a :class:`JobWindow`; ``now`` ends the window of unfinished jobs."""
    return reconstruct(
        events,
        window.created_at,
        window.end(now),
        order_id=order_id,
        validate=validate,
    )


def visible_intervals(
    timeline: Timeline, min_wait_seconds_to_display: int = 0
) -> List[Interval]:
    """
    Intervals worth drawing on a timeline view.

    Wait intervals not strictly longer than ``min_wait_seconds_to_display``
    are hidden (60 gives the reduced-clutter view). The timeline and its
    summary are left untouched.
    """
    return [
        interval
        for interval in timeline.intervals
        if interval.kind == "stage"
        or interval.duration_seconds > min_wait_seconds_to_display
    ]
