from datetime import datetime, timezone


def format_timestamp(t_unix: float) -> str:
    dt = datetime.fromtimestamp(t_unix, tz=timezone.utc)
    return dt.strftime("%H:%M:%S")


def format_flight_time(ms: int) -> str:
    """Device milliseconds as ``m:ss``."""
    seconds = max(0, int(ms)) // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"
