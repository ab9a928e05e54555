from datetime import date, timedelta

import pytest
from sqlalchemy import select

from app.core.exceptions import ValidationError
from app.models.lesson import Lesson
from app.models.recurring_schedule import RecurringSchedule
from app.services.materializer import (
    ALREADY_EXISTS,
    day_of_week_index,
    generate_lessons,
    generate_lessons_for_range,
    schedule_dates,
)

SUNDAY = date(2031, 3, 2)
TUESDAY = 2


@pytest.fixture()
def parties(seed):
    return {
        "teacher": seed.teacher("Dana Levi"),
        "other_teacher": seed.teacher("Omer Katz"),
        "student": seed.student("Noa Cohen"),
        "other_student": seed.student("Yael Mor"),
        "room": seed.room("Studio A"),
        "other_room": seed.room("Studio B"),
    }


def _schedule(db, parties, **overrides) -> RecurringSchedule:
    values = dict(
        teacher_id=parties["teacher"].id,
        student_id=parties["student"].id,
        room_id=parties["room"].id,
        instrument="piano",
        day_of_week=TUESDAY,
        start_time="16:00",
        end_time="16:45",
        duration=45,
        effective_from=SUNDAY,
        effective_until=SUNDAY + timedelta(days=27),
        is_active=True,
    )
    values.update(overrides)
    schedule = RecurringSchedule(**values)
    db.add(schedule)
    db.commit()
    return schedule


def test_day_of_week_index_is_sunday_based():
    assert day_of_week_index(SUNDAY) == 0
    assert day_of_week_index(date(2031, 3, 4)) == 2
    assert day_of_week_index(date(2031, 3, 8)) == 6


def test_schedule_dates_respect_weekday_and_effective_window(db_session, parties):
    schedule = _schedule(db_session, parties)

    dates = list(schedule_dates(schedule, SUNDAY - timedelta(days=14), SUNDAY + timedelta(days=60)))

    assert dates == [date(2031, 3, 4), date(2031, 3, 11), date(2031, 3, 18), date(2031, 3, 25)]
    assert list(schedule_dates(schedule, date(2031, 3, 5), date(2031, 3, 10))) == []
    assert list(schedule_dates(schedule, date(2031, 3, 10), date(2031, 3, 1))) == []


def test_generate_lessons_is_idempotent(db_session, parties):
    schedule = _schedule(db_session, parties)

    first = generate_lessons(db_session, schedule, SUNDAY, SUNDAY + timedelta(days=27))
    db_session.commit()
    second = generate_lessons(db_session, schedule, SUNDAY, SUNDAY + timedelta(days=27))
    db_session.commit()

    assert len(first.created) == 4
    assert first.skipped == []
    assert second.created == []
    assert [item.reason for item in second.skipped] == [ALREADY_EXISTS] * 4
    lessons = db_session.execute(select(Lesson).where(Lesson.schedule_id == schedule.id)).scalars().all()
    assert len(lessons) == 4
    assert all((item.start_time, item.end_time, item.duration) == ("16:00", "16:45", 45) for item in lessons)


def test_existing_manual_lesson_for_same_parties_counts_as_existing(db_session, seed, parties):
    schedule = _schedule(db_session, parties)
    seed.lesson(parties["teacher"], parties["student"], parties["room"], date(2031, 3, 11), "12:00", "12:35")

    result = generate_lessons(db_session, schedule, SUNDAY, SUNDAY + timedelta(days=27))

    assert len(result.created) == 3
    assert [(item.lesson_date, item.reason) for item in result.skipped] == [(date(2031, 3, 11), ALREADY_EXISTS)]


def test_conflicting_date_is_skipped_without_aborting(db_session, seed, parties):
    schedule = _schedule(db_session, parties)
    seed.lesson(parties["other_teacher"], parties["other_student"], parties["room"], date(2031, 3, 18), "16:30", "17:00")

    result = generate_lessons(db_session, schedule, SUNDAY, SUNDAY + timedelta(days=27))

    assert [item.lesson_date for item in result.created] == [date(2031, 3, 4), date(2031, 3, 11), date(2031, 3, 25)]
    assert len(result.skipped) == 1
    assert result.skipped[0].lesson_date == date(2031, 3, 18)
    assert "Studio A" in result.skipped[0].reason


def test_inactive_schedule_cannot_be_materialized(db_session, parties):
    schedule = _schedule(db_session, parties, is_active=False)

    with pytest.raises(ValidationError):
        generate_lessons(db_session, schedule, SUNDAY, SUNDAY + timedelta(days=7))


def test_generate_for_range_covers_every_active_schedule(db_session, parties):
    _schedule(db_session, parties)
    _schedule(
        db_session,
        parties,
        teacher_id=parties["other_teacher"].id,
        student_id=parties["other_student"].id,
        room_id=parties["other_room"].id,
        day_of_week=4,
        effective_until=None,
    )
    _schedule(db_session, parties, day_of_week=5, is_active=False)

    result = generate_lessons_for_range(db_session, SUNDAY, SUNDAY + timedelta(days=13))

    assert len(result.created) == 4
    assert {day_of_week_index(item.lesson_date) for item in result.created} == {2, 4}


def test_generate_for_range_enforces_the_cap(db_session):
    with pytest.raises(ValidationError):
        generate_lessons_for_range(db_session, SUNDAY, SUNDAY + timedelta(days=91))
    with pytest.raises(ValidationError):
        generate_lessons_for_range(db_session, SUNDAY, SUNDAY - timedelta(days=1))

    empty = generate_lessons_for_range(db_session, SUNDAY, SUNDAY + timedelta(days=90))
    assert empty.created == [] and empty.skipped == []
