from datetime import datetime, timezone

def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def parse_iso_z(s: str) -> datetime:
    # accepts "...Z", "+00:00" offsets and naive strings (taken as UTC)
    return ensure_utc(datetime.fromisoformat(s.strip().replace("Z", "+00:00")))
