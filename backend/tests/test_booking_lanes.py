from datetime import date

from sqlalchemy import select

from app.models.booking_lane import BookingLane, BookingResource
from app.services import booking_lanes
from app.services.booking import book_lesson
from app.services.booking_lanes import lane_key_for_date, lane_key_for_weekday, lock_lanes
from app.services.schedules import create_schedule

LESSON_DAY = date(2031, 3, 4)


def _lane_rows(db) -> list[tuple[str, str, str]]:
    rows = db.execute(select(BookingLane)).scalars().all()
    return sorted((row.lane.value, row.resource_id, row.slot_key) for row in rows)


def _book(db, teacher, student, room, start, end, lesson_date=LESSON_DAY):
    return book_lesson(
        db,
        teacher_id=teacher.id,
        student_id=student.id,
        room_id=room.id,
        instrument="piano",
        lesson_date=lesson_date,
        start_time=start,
        end_time=end,
    )


def test_lane_keys():
    assert lane_key_for_date(LESSON_DAY) == "2031-03-04"
    assert lane_key_for_weekday(2) == "dow:2"


def test_lock_lanes_claims_one_row_per_resource_and_slot(db_session):
    lanes = [
        (BookingResource.teacher, "t-1"),
        (BookingResource.room, "r-1"),
        (BookingResource.teacher, "t-1"),
        (BookingResource.student, ""),
    ]
    lock_lanes(db_session, "2031-03-04", lanes)
    lock_lanes(db_session, "2031-03-04", lanes)
    db_session.commit()

    assert _lane_rows(db_session) == [
        ("room", "r-1", "2031-03-04"),
        ("teacher", "t-1", "2031-03-04"),
    ]


def test_lock_lanes_claims_in_sorted_order(db_session, monkeypatch):
    claimed = []
    ensure = booking_lanes._ensure_lane_row

    def recording(db, lane, resource_id, slot_key):
        claimed.append((lane, resource_id))
        ensure(db, lane, resource_id, slot_key)

    monkeypatch.setattr(booking_lanes, "_ensure_lane_row", recording)
    lock_lanes(
        db_session,
        "dow:3",
        [
            (BookingResource.teacher, "t-2"),
            (BookingResource.teacher, "t-1"),
            (BookingResource.student, "s-1"),
            (BookingResource.room, "r-1"),
        ],
    )

    assert claimed == [
        (BookingResource.room, "r-1"),
        (BookingResource.student, "s-1"),
        (BookingResource.teacher, "t-1"),
        (BookingResource.teacher, "t-2"),
    ]


def test_repeated_bookings_reuse_lane_rows(db_session, seed):
    dana = seed.teacher("Dana Levi")
    noa = seed.student("Noa Cohen")
    studio = seed.room("Studio A")

    _book(db_session, dana, noa, studio, "09:00", "09:45")
    _book(db_session, dana, noa, studio, "10:00", "10:45")
    db_session.commit()
    assert _lane_rows(db_session) == [
        ("room", studio.id, "2031-03-04"),
        ("student", noa.id, "2031-03-04"),
        ("teacher", dana.id, "2031-03-04"),
    ]

    _book(db_session, dana, noa, studio, "09:00", "09:45", lesson_date=date(2031, 3, 5))
    db_session.commit()
    rows = _lane_rows(db_session)
    assert len(rows) == 6
    assert {slot for _, _, slot in rows} == {"2031-03-04", "2031-03-05"}


def test_schedules_lock_weekday_lanes(db_session, seed):
    dana = seed.teacher("Dana Levi")
    noa = seed.student("Noa Cohen")
    studio = seed.room("Studio A")

    create_schedule(
        db_session,
        teacher_id=dana.id,
        student_id=noa.id,
        room_id=studio.id,
        instrument="piano",
        day_of_week=2,
        start_time="17:00",
        end_time="17:45",
        effective_from=LESSON_DAY,
    )
    db_session.commit()

    weekday_rows = [row for row in _lane_rows(db_session) if row[2].startswith("dow:")]
    assert weekday_rows == [
        ("room", studio.id, "dow:2"),
        ("student", noa.id, "dow:2"),
        ("teacher", dana.id, "dow:2"),
    ]
