"""
Human-readable durations for the UI layer (Ukrainian plural rules).
"""

from biosync.clock import MS_PER_HOUR, MS_PER_MINUTE, MS_PER_SECOND


def plural_form(number: int, one: str, few: str, many: str) -> str:
    """
    Pick the Ukrainian plural form: 1 / 21 -> one, 2-4 / 22-24 -> few,
    everything else (including 11-14) -> many.
    """
    number = abs(int(number))
    last_digit = number % 10
    last_two_digits = number % 100
    if 11 <= last_two_digits <= 14:
        return many
    if last_digit == 1:
        return one
    if 2 <= last_digit <= 4:
        return few
    return many


def unit_word(number: int) -> str:
    return plural_form(number, "стік", "стіки", "стіків")


def hour_word(number: int) -> str:
    return plural_form(number, "година", "години", "годин")


def minute_word(number: int) -> str:
    return plural_form(number, "хвилина", "хвилини", "хвилин")


def day_word(number: int) -> str:
    return plural_form(number, "день", "дні", "днів")


def format_hours(total_hours: int) -> str:
    """e.g. "5 годин", "1 день 2 години"."""
    if total_hours < 24:
        return f"{total_hours} {hour_word(total_hours)}"
    days, hours = divmod(total_hours, 24)
    result = f"{days} {day_word(days)}"
    if hours > 0:
        result += f" {hours} {hour_word(hours)}"
    return result


def format_minutes(total_minutes: int) -> str:
    """e.g. "5 хвилин", "1 година 2 хвилини"."""
    if total_minutes < 60:
        return f"{total_minutes} {minute_word(total_minutes)}"
    hours, minutes = divmod(total_minutes, 60)
    result = f"{hours} {hour_word(hours)}"
    if minutes > 0:
        result += f" {minutes} {minute_word(minutes)}"
    return result


def format_countdown(remaining_ms: int) -> str:
    """MM:SS (H:MM:SS past an hour) or "GO!" once the cooldown is over."""
    if remaining_ms <= 0:
        return "GO!"
    hours, rest = divmod(remaining_ms, MS_PER_HOUR)
    minutes, rest = divmod(rest, MS_PER_MINUTE)
    seconds = rest // MS_PER_SECOND
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"
