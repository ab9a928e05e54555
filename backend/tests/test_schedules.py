from datetime import date, timedelta

import pytest

from app.core.exceptions import ConflictError, ValidationError
from app.services.schedules import create_schedule, deactivate_schedule, materialization_window, update_schedule

SUNDAY = date(2031, 3, 2)


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


def _create(db, parties, *, teacher="teacher", student="student", room="room", **overrides):
    values = dict(
        teacher_id=parties[teacher].id,
        student_id=parties[student].id,
        room_id=parties[room].id,
        instrument="Piano",
        day_of_week=2,
        start_time="16:00",
        end_time="16:45",
        duration=45,
        effective_from=SUNDAY,
        effective_until=SUNDAY + timedelta(days=27),
        today=SUNDAY,
    )
    values.update(overrides)
    return create_schedule(db, **values)


def test_create_schedule_materializes_within_window(db_session, parties):
    schedule, result = _create(db_session, parties)

    assert schedule.is_active
    assert [item.lesson_date for item in result.created] == [
        date(2031, 3, 4),
        date(2031, 3, 11),
        date(2031, 3, 18),
        date(2031, 3, 25),
    ]
    assert all(item.schedule_id == schedule.id for item in result.created)


def test_materialization_window_starts_today_and_stops_at_horizon(db_session, parties):
    schedule, _ = _create(db_session, parties, effective_until=None, materialize=False)

    start, until = materialization_window(schedule, today=SUNDAY + timedelta(days=10))

    assert start == SUNDAY + timedelta(days=10)
    assert until == SUNDAY + timedelta(days=130)


def test_open_ended_schedule_is_capped_by_horizon(db_session, parties):
    _, result = _create(db_session, parties, effective_until=None)

    assert result.created
    assert max(item.lesson_date for item in result.created) <= SUNDAY + timedelta(days=120)


def test_schedule_conflicts_are_checked_per_weekday(db_session, parties):
    _create(db_session, parties, materialize=False)

    with pytest.raises(ConflictError) as excinfo:
        _create(
            db_session,
            parties,
            teacher="other_teacher",
            room="other_room",
            start_time="16:30",
            end_time="17:00",
            materialize=False,
        )
    assert excinfo.value.details["resource"] == "student"
    assert "conflicting_schedule_id" in excinfo.value.details

    other_day, _ = _create(
        db_session,
        parties,
        teacher="other_teacher",
        room="other_room",
        day_of_week=3,
        start_time="16:30",
        end_time="17:00",
        materialize=False,
    )
    assert other_day.day_of_week == 3


def test_invalid_windows_are_rejected(db_session, parties):
    with pytest.raises(ValidationError):
        _create(db_session, parties, day_of_week=7)
    with pytest.raises(ValidationError):
        _create(db_session, parties, effective_until=SUNDAY - timedelta(days=1))
    with pytest.raises(ValidationError):
        _create(db_session, parties, start_time="17:00", end_time="16:00")


def test_update_schedule_excludes_itself(db_session, parties):
    schedule, _ = _create(db_session, parties, materialize=False)

    updated = update_schedule(db_session, schedule, {"start_time": "16:15", "end_time": "17:00"})

    assert (updated.start_time, updated.end_time) == ("16:15", "17:00")


def test_deactivated_schedule_frees_the_slot_and_reactivation_rechecks(db_session, parties):
    schedule, _ = _create(db_session, parties, materialize=False)
    deactivate_schedule(db_session, schedule)

    replacement, _ = _create(db_session, parties, teacher="other_teacher", materialize=False)
    assert replacement.is_active

    with pytest.raises(ConflictError):
        update_schedule(db_session, schedule, {"is_active": True})

    deactivated = update_schedule(db_session, replacement, {"is_active": False, "start_time": "10:00", "end_time": "11:00"})
    assert not deactivated.is_active


def test_effective_until_can_be_cleared(db_session, parties):
    schedule, _ = _create(db_session, parties, materialize=False)

    update_schedule(db_session, schedule, {"effective_until": None})

    assert schedule.effective_until is None
