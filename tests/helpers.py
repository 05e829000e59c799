"""Event builders shared by the test modules."""

from datetime import datetime, timedelta, timezone

from src.core.store import StageEvent

T0 = datetime(2025, 11, 9, 10, 0, 0, tzinfo=timezone.utc)


def at(hours: float = 0, seconds: int = 0) -> datetime:
    """Instant ``hours`` + ``seconds`` after T0."""
    return T0 + timedelta(hours=hours, seconds=seconds)


def make_event(
    created_at: datetime,
    previous_stage=None,
    new_stage=None,
    duration_seconds=None,
    action: str = "COMPLETED",
    staff_name=None,
    order_id: str = "order-1",
    redo_reason=None,
) -> StageEvent:
    return StageEvent(
        order_id=order_id,
        created_at=created_at,
        previous_stage=previous_stage,
        new_stage=new_stage,
        staff_name=staff_name,
        action=action,
        duration_seconds=duration_seconds,
        redo_reason=redo_reason,
    )
