import re

TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def normalize_time(value: str) -> str:
    """Return a zero-padded ``HH:MM`` string; stored times must always be normalized."""
    match = TIME_PATTERN.match(value.strip())
    if match is None:
        raise ValueError("Time must be in HH:MM 24-hour format")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def parse_time_to_minutes(value: str) -> int:
    hours, minutes = normalize_time(value).split(":")
    return int(hours) * 60 + int(minutes)


def validate_time_range(start_time: str, end_time: str) -> tuple[str, str]:
    start = normalize_time(start_time)
    end = normalize_time(end_time)
    if parse_time_to_minutes(end) <= parse_time_to_minutes(start):
        raise ValueError("end_time must be after start_time")
    return start, end


def normalize_text(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None
