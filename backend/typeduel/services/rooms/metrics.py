import math
from typing import Optional

from typeduel.models import now_ms


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; scores shown to players round .5 up
    return int(math.floor(value + 0.5))


def calculate_accuracy(progress: str, phrase: Optional[str]) -> int:
    """Percentage of typed characters that match the phrase position by position.

    Characters typed past the end of the phrase count as mismatches. An empty
    progress string is 100% accurate.
    """
    if not progress:
        return 100
    phrase = phrase or ''
    matches = sum(1 for i, ch in enumerate(progress) if i < len(phrase) and ch == phrase[i])
    return round_half_up(matches / len(progress) * 100)


def calculate_wpm(progress: str, start_time: Optional[int], end_time: Optional[int] = None) -> int:
    """Words per minute with the usual five-characters-per-word convention.

    ``end_time`` defaults to now, which gives a live estimate mid-round.
    """
    if not start_time:
        return 0
    if end_time is None:
        end_time = now_ms()
    elapsed_minutes = (end_time - start_time) / 60000
    if elapsed_minutes <= 0:
        return 0
    return round_half_up((len(progress or '') / 5) / elapsed_minutes)
