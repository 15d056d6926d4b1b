"""Оракул «следующее время запуска» поверх APScheduler CronTrigger."""
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from apscheduler.triggers.cron import CronTrigger

from src.exceptions import ValidationError

# (cron_expression, now) → ближайшее время запуска строго после now
NextRunOracle = Callable[[str, datetime], datetime]

# В crontab 0 и 7 — воскресенье; в APScheduler 0 — понедельник, поэтому
# числовые дни недели переводим в имена
_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _crontab_day_of_week(field: str) -> str:
    """Поле дня недели crontab → имена дней для APScheduler."""
    days: list[str] = []
    for part in field.split(","):
        expr, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            raise ValueError(f"invalid step in day of week {part!r}")
        if expr in ("*", "?"):
            if not step_text:
                return "*"
            first, last = 0, 6
        elif expr.isalpha():
            # Имена (mon, sun, ...) APScheduler понимает сам
            days.append(part)
            continue
        else:
            start, _, end = expr.partition("-")
            if not start.isdigit() or (end and not end.isdigit()):
                days.append(part)
                continue
            first = int(start)
            last = int(end) if end else (6 if step_text else first)
        if not 0 <= first <= last <= 7:
            raise ValueError(f"day of week out of range in {part!r}")
        for day in range(first, last + 1, step):
            name = _WEEKDAYS[day % 7]
            if name not in days:
                days.append(name)
    return ",".join(days)


def _build_trigger(expression: str) -> CronTrigger:
    """5 полей — стандартный crontab, 6 полей — с секундами впереди."""
    fields = expression.split()
    if len(fields) == 5:
        fields.insert(0, "0")
    elif len(fields) != 6:
        raise ValueError(f"expected 5 or 6 fields, got {len(fields)}")
    second, minute, hour, day, month, day_of_week = fields
    return CronTrigger(
        second=second,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_crontab_day_of_week(day_of_week),
        timezone=UTC,
    )


def next_fire_time(expression: str, now: datetime) -> datetime:
    """Вычислить следующее время запуска. Некорректное выражение → ValidationError."""
    try:
        trigger = _build_trigger(expression.strip())
    except ValueError as e:
        raise ValidationError(f"Invalid cron expression {expression!r}: {e}") from e

    # Отсекаем текущую секунду, чтобы результат был строго > now
    start = now.replace(microsecond=0) + timedelta(seconds=1)
    fire_time = trigger.get_next_fire_time(None, start)
    if fire_time is None:
        raise ValidationError(f"Cron expression {expression!r} never fires")
    return fire_time.astimezone(UTC)
