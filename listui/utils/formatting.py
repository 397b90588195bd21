"""
Helper functions for formatting data into human-readable strings.
"""


def format_clock(seconds: float) -> str:
    """Formats seconds as mm:ss, or hh:mm:ss past the hour."""
    s = max(0, int(seconds))
    minutes, secs = divmod(s, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_position(elapsed: float, duration: float, paused: bool = False) -> str:
    """Formats a playback position label such as '01:02 / 03:30'."""
    label = f"{format_clock(elapsed)} / {format_clock(duration)}"
    if paused:
        label += " (paused)"
    return label


def truncate(text: str, width: int) -> str:
    """Shortens text to the given width, marking the cut with an ellipsis."""
    if width <= 1 or len(text) <= width:
        return text[:max(width, 0)]
    return text[: width - 1] + "…"
