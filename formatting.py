import math


def format_runtime(minutes):
    if not minutes:
        return "N/A"
    hours, mins = divmod(int(minutes), 60)
    if hours == 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def format_rating(vote_average):
    # Half-up, so 8.25 -> 83% rather than banker's rounding.
    return f"{math.floor(vote_average * 10 + 0.5)}%"


def get_year(date_string):
    if not date_string:
        return "N/A"
    return date_string.split("-")[0]


def format_seasons(season_count):
    if not season_count:
        return "N/A"
    return f"{season_count} Season{'' if season_count == 1 else 's'}"


def truncate_text(text, max_length):
    if len(text) <= max_length:
        return text
    return f"{text[: max_length - 3]}..."


def format_time_remaining(seconds):
    mins, secs = divmod(max(int(seconds), 0), 60)
    return f"{mins}:{secs:02d}"
