from collections import OrderedDict
from datetime import datetime, timedelta

import pytz

from init_db import current_timestamp


def stats_window_start(days, now=None):
    """Timestamp string for `days` days before now (UTC)."""
    now = now or datetime.now(pytz.utc)
    return current_timestamp(now - timedelta(days=days))


def _round1(value):
    return round(value, 1)


def summarize_sessions(rows):
    """
    Practice statistics for a list of session rows.

    Each row needs duration_minutes, mood_before, mood_after and completed_at.
    Missing durations and moods count as 0.
    """
    total_sessions = len(rows)
    total_minutes = sum(row["duration_minutes"] or 0 for row in rows)

    if total_sessions:
        avg_mood_before = sum(row["mood_before"] or 0 for row in rows) / total_sessions
        avg_mood_after = sum(row["mood_after"] or 0 for row in rows) / total_sessions
    else:
        avg_mood_before = avg_mood_after = 0

    sessions_by_date = OrderedDict()
    for row in sorted(rows, key=lambda r: r["completed_at"]):
        date = row["completed_at"][:10]  # YYYY-MM-DD
        day = sessions_by_date.setdefault(date, {"count": 0, "total_minutes": 0})
        day["count"] += 1
        day["total_minutes"] += row["duration_minutes"] or 0

    chart_data = [
        {"date": date, "sessions": day["count"], "minutes": day["total_minutes"]}
        for date, day in sessions_by_date.items()
    ]

    return {
        "totalSessions": total_sessions,
        "totalMinutes": total_minutes,
        "avgMoodBefore": _round1(avg_mood_before),
        "avgMoodAfter": _round1(avg_mood_after),
        "moodImprovement": _round1(avg_mood_after - avg_mood_before),
        "chartData": chart_data,
    }
