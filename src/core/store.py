"""
Data Models for the Workshop Tracker.

This module defines the plain data structures exchanged between the log
store, the duration engine and the API. Nothing here is persisted: timelines
are rebuilt from the raw event log on every view.

Key principles:
- ALL timestamps must be timezone-aware (UTC)
- Durations are whole seconds
- Models are serialized with ISO-8601 instants
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

TERMINAL_STAGE = "Completed"
WAIT_LABEL = "Waiting"
UNKNOWN_STAGE = "Unknown"
TOTAL_KEY = "Total"

# Reasons QC can give when sending a job back
REDO_REASONS = ("Loose Stone", "Polishing Issue", "Sizing Error", "Metal Flaw", "Other")

# stage name -> accumulated seconds, plus TOTAL_KEY
StageDurationMap = Dict[str, float]


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def is_terminal_stage(stage: Optional[str]) -> bool:
    """
    True when ``stage`` names the terminal stage.

    Matches case-insensitively on containment ("Completed - Shipped" is
    terminal), the same rule the archive query applies in SQL.
    """
    return TERMINAL_STAGE.lower() in (stage or "").lower()


@dataclass
class StageEvent:
    """
    One logged stage transition for a job.

    Parameters
    ----------
    order_id : str
        Job this event belongs to
    created_at : datetime
        When the event was recorded, i.e. when the exited stage's work ended
        (must be timezone-aware UTC)
    previous_stage : Optional[str]
        Stage being exited (None on a "started" event)
    new_stage : Optional[str]
        Stage being entered
    staff_name : Optional[str]
        Who performed the action
    action : str
        One of 'STARTED', 'COMPLETED', 'REJECTED'
    duration_seconds : Optional[float]
        Seconds attributed to the exited stage; may be missing or corrupt
    redo_reason : Optional[str]
        Reason attached to 'REJECTED' events
    """

    order_id: str
    created_at: datetime
    previous_stage: Optional[str] = None
    new_stage: Optional[str] = None
    staff_name: Optional[str] = None
    action: str = "COMPLETED"
    duration_seconds: Optional[float] = None
    redo_reason: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate timezone-aware timestamp."""
        if self.created_at.tzinfo is None:
            raise ValueError(f"StageEvent {self.order_id}: created_at must be timezone-aware")

    @property
    def is_redo(self) -> bool:
        return self.action == "REJECTED"


@dataclass
class JobWindow:
    """
    Time window bounding a job's reconstructed timeline.

    Parameters
    ----------
    created_at : datetime
        Job creation instant (timezone-aware UTC)
    updated_at : datetime
        Last update instant; the window end for terminal jobs
    is_terminal : bool
        True when the job's current stage is the terminal stage
    """

    created_at: datetime
    updated_at: datetime
    is_terminal: bool = False

    def __post_init__(self) -> None:
        """Validate timezone-aware timestamps."""
        if self.created_at.tzinfo is None:
            raise ValueError("JobWindow created_at must be timezone-aware")
        if self.updated_at.tzinfo is None:
            raise ValueError("JobWindow updated_at must be timezone-aware")

    @classmethod
    def from_stage(
        cls, created_at: datetime, updated_at: datetime, current_stage: Optional[str]
    ) -> "JobWindow":
        """Build a window, deriving terminality from the current stage name."""
        is_terminal = is_terminal_stage(current_stage)
        return cls(created_at=created_at, updated_at=updated_at, is_terminal=is_terminal)

    def end(self, now: datetime) -> datetime:
        """
        Window end for evaluation instant ``now``.

        Non-terminal jobs are still accruing time, so their window runs to
        ``now``; completed jobs stop at ``updated_at``. A naive ``now``
        raises ValueError.
        """
        if now.tzinfo is None:
            raise ValueError("JobWindow.end: now must be timezone-aware")
        return self.updated_at if self.is_terminal else now


@dataclass
class Interval:
    """
    A contiguous slice of a job's timeline.

    Parameters
    ----------
    kind : str
        'stage' for active work, 'wait' for idle time
    label : str
        Stage name, or 'Waiting' for wait intervals
    start : datetime
        Inclusive start
    end : datetime
        Exclusive end, never before ``start``
    duration_seconds : int
        Whole seconds between ``start`` and ``end``
    staff_name : Optional[str]
        Attributed staff (stage intervals only)
    is_redo : bool
        True for stage intervals produced by a 'REJECTED' event
    """

    kind: Literal["stage", "wait"]
    label: str
    start: datetime
    end: datetime
    duration_seconds: int
    staff_name: Optional[str] = None
    is_redo: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "label": self.label,
            "start": _serialize_datetime(self.start),
            "end": _serialize_datetime(self.end),
            "duration_seconds": self.duration_seconds,
            "staff_name": self.staff_name,
            "is_redo": self.is_redo,
        }


@dataclass
class TimelineSummary:
    """Aggregate totals; ``active_seconds + waiting_seconds == total_seconds``."""

    total_seconds: int = 0
    active_seconds: int = 0
    waiting_seconds: int = 0


@dataclass
class Timeline:
    """
    Reconstructed timeline for one job.

    Parameters
    ----------
    order_id : Optional[str]
        Job identifier (taken from the events when known)
    window_start : datetime
        Job creation instant
    window_end : datetime
        ``updated_at`` for completed jobs, the evaluation instant otherwise
    intervals : List[Interval]
        Ordered stage/wait intervals covering the window
    summary : TimelineSummary
        Total, active and waiting seconds
    stage_durations : StageDurationMap
        Per-stage accumulated seconds plus 'Total', zero stages included
    sanitized_count : int
        Number of events whose recorded duration was discarded as corrupt
    """

    window_start: datetime
    window_end: datetime
    order_id: Optional[str] = None
    intervals: List[Interval] = field(default_factory=list)
    summary: TimelineSummary = field(default_factory=TimelineSummary)
    stage_durations: StageDurationMap = field(default_factory=dict)
    sanitized_count: int = 0

    def display_stage_durations(self) -> StageDurationMap:
        """Stage durations with zero-valued stages omitted ('Total' is always kept)."""
        return {
            stage: seconds
            for stage, seconds in self.stage_durations.items()
            if stage == TOTAL_KEY or seconds > 0
        }

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert timeline to JSON-serializable dictionary.

        Returns
        -------
        dict
            JSON-serializable representation
        """
        return {
            "order_id": self.order_id,
            "window_start": _serialize_datetime(self.window_start),
            "window_end": _serialize_datetime(self.window_end),
            "intervals": [interval.to_dict() for interval in self.intervals],
            "summary": vars(self.summary),
            "stage_durations": self.display_stage_durations(),
            "sanitized_count": self.sanitized_count,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
