"""
Duration Aggregation for the Workshop Tracker.

Two entry points:

1. :func:`aggregate` folds a flat, multi-job stream of
   ``(order_id, previous_stage, duration_seconds)`` records into per-job
   stage totals. It backs the archive table columns, where a full timeline
   per row would be wasted work.
2. :class:`Aggregator` reads orders and production logs from the SQLite log
   store and feeds them to the timeline reconstructor or to
   :func:`aggregate`.
3. :func:`summarize_quality` counts completions and QC redos across the
   whole log for the analytics view.

The aggregator:
1. Loads raw rows from the log store
2. Parses timestamps to timezone-aware UTC (skipping unparseable rows)
3. Sanitizes every duration before summing
4. Returns plain data ready for JSON serialization
"""

import logging
import math
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from src.core.durations import (
    calculate_total_time,
    format_duration,
    is_corrupt,
    parse_timestamp,
    sanitize,
)
from src.core.errors import OrderNotFound
from src.core.store import (
    REDO_REASONS,
    TERMINAL_STAGE,
    TOTAL_KEY,
    JobWindow,
    StageDurationMap,
    StageEvent,
    Timeline,
)
from src.core.timeline import reconstruct_job

logger = logging.getLogger(__name__)

# Stage columns shown in the completed-jobs archive
ARCHIVE_STAGE_COLUMNS = ("Goldsmithing", "Setting", "Polishing")
ARCHIVE_LIMIT = 100
RECENT_REDO_LIMIT = 5


def _field(record: Union[Mapping[str, Any], Any], name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def aggregate(records: Iterable[Any]) -> Dict[str, StageDurationMap]:
    """
    Fold duration records into per-job stage totals.

    Parameters
    ----------
    records : Iterable
        Mappings or objects with ``order_id``, ``previous_stage`` and
        ``duration_seconds``. Order does not matter.

    Returns
    -------
    Dict[str, StageDurationMap]
        ``{order_id: {stage: seconds, ..., "Total": seconds}}``. Records
        without a ``previous_stage`` ("started" events) only count toward
        ``Total``. Records without an ``order_id`` are skipped.
    """
    result: Dict[str, StageDurationMap] = {}
    corrupt = 0
    orphaned = 0

    for record in records:
        order_id = _field(record, "order_id")
        if order_id is None or not str(order_id).strip():
            orphaned += 1
            continue
        order_id = str(order_id)
        raw = _field(record, "duration_seconds")
        if is_corrupt(raw):
            corrupt += 1
        seconds = sanitize(raw)

        durations = result.setdefault(order_id, {TOTAL_KEY: 0})
        stage = _field(record, "previous_stage")
        if stage is not None and str(stage).strip():
            stage = str(stage).strip()
            durations[stage] = durations.get(stage, 0) + seconds
        durations[TOTAL_KEY] += seconds

    if corrupt:
        logger.warning(f"Discarded {corrupt} corrupt duration(s) across {len(result)} orders")
    if orphaned:
        logger.warning(f"Skipped {orphaned} duration record(s) without an order_id")

    return result


def summarize_quality(
    events: Iterable[StageEvent], recent_limit: int = RECENT_REDO_LIMIT
) -> Dict[str, Any]:
    """
    Shop-wide quality metrics over production log events.

    Parameters
    ----------
    events : Iterable[StageEvent]
        Log events across all orders, in any order
    recent_limit : int
        How many of the newest redos to list

    Returns
    -------
    dict
        ``total_logs``, ``completions`` (events entering the terminal stage), ``redos``
        (events carrying a redo reason), ``quality_rate`` (percentage of
        events that are not redos, rounded half up; 0 with no events),
        ``redo_reasons`` (count per known reason) and ``recent_redos``
        (newest first)
    """
    events = list(events)
    redos = [e for e in events if e.redo_reason and e.redo_reason.strip()]
    completions = sum(1 for e in events if (e.new_stage or "").strip() == TERMINAL_STAGE)

    quality_rate = 0
    if events:
        quality_rate = math.floor((len(events) - len(redos)) * 100 / len(events) + 0.5)

    reason_counts = {reason: 0 for reason in REDO_REASONS}
    for event in redos:
        reason = event.redo_reason.strip()
        if reason in reason_counts:
            reason_counts[reason] += 1

    redos.sort(key=lambda e: e.created_at, reverse=True)
    recent = [
        {
            "order_id": event.order_id,
            "redo_reason": event.redo_reason.strip(),
            "staff_name": event.staff_name,
            "created_at": event.created_at.isoformat(),
        }
        for event in redos[:recent_limit]
    ]

    return {
        "total_logs": len(events),
        "completions": completions,
        "redos": len(redos),
        "quality_rate": quality_rate,
        "redo_reasons": reason_counts,
        "recent_redos": recent,
    }


class Aggregator:
    """
    Read-side adapter over the workshop's SQLite log store.

    Expects two tables: ``orders`` (one row per job) and
    ``production_logs`` (one row per stage transition).
    """

    def __init__(self, db_path: Union[str, Path]):
        """
        Initialize the aggregator.

        Parameters
        ----------
        db_path : str or Path
            Path to the SQLite database
        """
        self.db_path = Path(db_path)
        logger.info(f"Initialized Aggregator with database: {self.db_path}")

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        if not self.db_path.exists():
            logger.warning(f"Database not found at {self.db_path}")
            return []

        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def load_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        """Load one order row as a dict, or None if it does not exist."""
        rows = self._query("SELECT * FROM orders WHERE id = ?", (order_id,))
        return dict(rows[0]) if rows else None

    def load_events(self, order_id: str) -> List[StageEvent]:
        """
        Load an order's stage events in ascending ``created_at`` order.

        Rows with an unparseable ``created_at`` are skipped.
        """
        rows = self._query(
            """
            SELECT * FROM production_logs
            WHERE order_id = ?
            ORDER BY created_at ASC, id ASC
            """,
            (order_id,),
        )

        events = []
        for row in rows:
            event = self._row_to_event(dict(row))
            if event is not None:
                events.append(event)

        # Text ordering in SQL is only reliable for uniformly formatted timestamps
        events.sort(key=lambda e: e.created_at)
        logger.info(f"Loaded {len(events)}/{len(rows)} events for order {order_id}")
        return events

    def _row_to_event(self, row: Dict[str, Any]) -> Optional[StageEvent]:
        created_at = parse_timestamp(row.get("created_at"))
        if created_at is None:
            logger.warning(
                f"Skipping log row {row.get('id')} for order {row.get('order_id')}: "
                f"unparseable created_at {row.get('created_at')!r}"
            )
            return None

        return StageEvent(
            order_id=str(row.get("order_id")),
            created_at=created_at,
            previous_stage=row.get("previous_stage"),
            new_stage=row.get("new_stage"),
            staff_name=row.get("staff_name"),
            action=row.get("action") or "COMPLETED",
            duration_seconds=row.get("duration_seconds"),
            redo_reason=row.get("redo_reason"),
        )

    def load_all_events(self) -> List[StageEvent]:
        """Load every production log event, newest first; unparseable rows are skipped."""
        rows = self._query(
            "SELECT * FROM production_logs ORDER BY created_at DESC, id DESC"
        )
        events = [e for e in (self._row_to_event(dict(row)) for row in rows) if e is not None]
        events.sort(key=lambda e: e.created_at, reverse=True)
        logger.info(f"Loaded {len(events)}/{len(rows)} production log events")
        return events

    def load_completed_orders(self, limit: int = ARCHIVE_LIMIT) -> List[Dict[str, Any]]:
        """Load up to ``limit`` completed orders, most recently finished first."""
        rows = self._query(
            """
            SELECT * FROM orders
            WHERE LOWER(current_stage) LIKE '%completed%'
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        logger.info(f"Loaded {len(rows)} completed orders")
        return [dict(row) for row in rows]

    def load_duration_records(self, order_ids: List[str]) -> List[Dict[str, Any]]:
        """Load ``(order_id, previous_stage, duration_seconds)`` rows for many orders."""
        if not order_ids:
            return []

        placeholders = ", ".join("?" for _ in order_ids)
        rows = self._query(
            f"""
            SELECT order_id, previous_stage, duration_seconds
            FROM production_logs
            WHERE order_id IN ({placeholders})
            """,  # nosec B608 - placeholders only
            tuple(order_ids),
        )
        return [dict(row) for row in rows]

    def build_timeline(self, order_id: str, now: datetime) -> Timeline:
        """
        Reconstruct one order's timeline as of ``now``.

        Parameters
        ----------
        order_id : str
            Order to reconstruct
        now : datetime
            Evaluation instant; ends the window of unfinished orders

        Returns
        -------
        Timeline
            Reconstructed timeline

        Raises
        ------
        OrderNotFound
            If the order does not exist or has no parseable ``created_at``
        """
        order = self.load_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)

        created_at = parse_timestamp(order.get("created_at"))
        if created_at is None:
            logger.warning(f"Order {order_id} has unparseable created_at {order.get('created_at')!r}")
            raise OrderNotFound(order_id)
        updated_at = parse_timestamp(order.get("updated_at")) or created_at

        window = JobWindow.from_stage(created_at, updated_at, order.get("current_stage"))
        events = self.load_events(order_id)
        return reconstruct_job(events, window, now, order_id=str(order_id))

    def build_archive(self, limit: int = ARCHIVE_LIMIT) -> List[Dict[str, Any]]:
        """
        Build completed-jobs archive rows with per-stage durations.

        Parameters
        ----------
        limit : int
            Maximum number of completed orders to include (newest first)

        Returns
        -------
        List[Dict[str, Any]]
            One row per completed order with its raw ``stage_durations`` map,
            the elapsed ``total_time`` and ``formatted`` stage columns
        """
        start = datetime.now(timezone.utc)
        orders = self.load_completed_orders(limit)
        order_ids = [str(order["id"]) for order in orders]
        durations = aggregate(self.load_duration_records(order_ids))

        rows = []
        for order in orders:
            order_id = str(order["id"])
            stage_durations = durations.get(order_id, {TOTAL_KEY: 0})
            formatted = {
                stage: format_duration(stage_durations.get(stage))
                for stage in ARCHIVE_STAGE_COLUMNS
            }
            formatted[TOTAL_KEY] = format_duration(stage_durations.get(TOTAL_KEY))

            rows.append(
                {
                    "id": order_id,
                    "vtiger_id": order.get("vtiger_id"),
                    "article_code": order.get("article_code"),
                    "is_rush": bool(order.get("is_rush")),
                    "is_external": bool(order.get("is_external")),
                    "created_at": order.get("created_at"),
                    "updated_at": order.get("updated_at"),
                    "total_time": calculate_total_time(
                        order.get("created_at"), order.get("updated_at")
                    ),
                    "stage_durations": stage_durations,
                    "formatted": formatted,
                }
            )

        elapsed_ms = (datetime.now(timezone.utc) - start).total_seconds() * 1000
        logger.info(f"Archive built in {elapsed_ms:.1f}ms: {len(rows)} orders")
        return rows

    def build_analytics(self) -> Dict[str, Any]:
        """Quality metrics over the whole production log."""
        metrics = summarize_quality(self.load_all_events())
        logger.info(
            f"Analytics: {metrics['completions']} completions, "
            f"{metrics['redos']} redos, quality {metrics['quality_rate']}%"
        )
        return metrics
