"""
Slot availability.

A pharmacy's slot template minus the slots already taken for the day, and,
when the day is today, minus the slots that have already started.
"""
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, List, Set, Tuple

from models.appointment import Appointment, STATUS_ACTIVE
from scheduling.clock import as_utc, to_naive_utc


def local_time_of_day(instant: datetime, zone: tzinfo) -> time:
    local = as_utc(instant).astimezone(zone)
    return time(local.hour, local.minute)


def local_today(now: datetime, zone: tzinfo) -> date:
    return as_utc(now).astimezone(zone).date()


def available_slots(
    template: Iterable[time],
    booked_instants: Iterable[datetime],
    target_date: date,
    now: datetime,
    zone: tzinfo,
) -> List[time]:
    """
    Return the ascending list of offerable slots for ``target_date``.

    ``now`` must be sampled once by the caller and is interpreted in ``zone``,
    the same zone the booked instants are converted to.
    """
    booked = {local_time_of_day(instant, zone) for instant in booked_instants}
    slots = sorted(t for t in set(template) if t not in booked)

    local_now = as_utc(now).astimezone(zone)
    if target_date == local_now.date():
        cutoff = time(local_now.hour, local_now.minute)
        slots = [t for t in slots if t >= cutoff]

    return slots


def bookable_dates(now: datetime, zone: tzinfo, days: int = 14) -> List[date]:
    """Rolling booking window starting at the local "today"."""
    today = local_today(now, zone)
    return [today + timedelta(days=i) for i in range(max(days, 0))]


def local_day_bounds(target_date: date, zone: tzinfo) -> Tuple[datetime, datetime]:
    """UTC half-open range [start, end) covering ``target_date`` as lived in ``zone``."""
    start = datetime.combine(target_date, time(0, 0), tzinfo=zone)
    end = datetime.combine(target_date + timedelta(days=1), time(0, 0), tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def booked_instants_for(pharmacy_id: int, target_date: date, zone: tzinfo) -> Set[datetime]:
    """
    ACTIVE appointment instants falling on ``target_date`` in the viewer's zone.

    Selected by instant rather than by the booker's stored local_date, so a
    booking made from another zone still shows up on the day it lands here.
    """
    start, end = local_day_bounds(target_date, zone)
    rows = (
        Appointment.query
        .with_entities(Appointment.scheduled_at)
        .filter(
            Appointment.pharmacy_id == pharmacy_id,
            Appointment.scheduled_at >= to_naive_utc(start),
            Appointment.scheduled_at < to_naive_utc(end),
            Appointment.status == STATUS_ACTIVE,
        )
        .all()
    )
    return {as_utc(row.scheduled_at) for row in rows}
