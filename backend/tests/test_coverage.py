from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select, update

from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    LessonAlreadyCoveredError,
    ResourceNotFoundError,
    ValidationError,
)
from app.models.lesson import Lesson, LessonStatus
from app.models.notification import Notification, NotificationType
from app.models.substitute_request import SubstituteRequest, SubstituteRequestStatus
from app.models.teacher_absence import AbsenceStatus, TeacherAbsence
from app.services.booking import update_lesson
from app.services.coverage import (
    SIBLING_APPROVED_NOTE,
    absence_coverage_status,
    create_substitute_requests,
    delete_absence,
    find_substitute_candidates,
    report_absence,
    respond_to_request,
    update_absence,
)

ABSENCE_DAY = date(2031, 3, 4)


@pytest.fixture()
def world(seed, db_session):
    admin = seed.admin()
    absent = seed.teacher("Xavier Absent")
    a = seed.teacher("Avi Alon")
    b = seed.teacher("Bella Baron")
    c = seed.teacher("Carmel Cohen")
    guitarist = seed.teacher("Dor Guitar", instruments=("guitar",))
    busy = seed.teacher("Eli Busy")
    away = seed.teacher("Fay Away")
    retired = seed.teacher("Gil Retired", is_active=False)
    students = [seed.student(name) for name in ("Shir One", "Tal Two", "Uri Three", "Vered Four")]
    rooms = [seed.room(name) for name in ("Room 1", "Room 2", "Room 3", "Room 4")]

    lessons = [
        seed.lesson(absent, students[0], rooms[0], ABSENCE_DAY, "09:00", "09:45"),
        seed.lesson(absent, students[1], rooms[1], ABSENCE_DAY, "10:00", "10:45"),
        seed.lesson(absent, students[2], rooms[2], ABSENCE_DAY, "11:00", "11:45"),
    ]
    seed.lesson(absent, students[0], rooms[0], ABSENCE_DAY, "13:00", "13:45", status=LessonStatus.cancelled)
    seed.lesson(absent, students[0], rooms[0], date(2031, 3, 5), "09:00", "09:45")
    seed.lesson(busy, students[3], rooms[3], ABSENCE_DAY, "10:15", "10:30")

    # Experience: Bella 3 completed lessons, Avi 1, Carmel none.
    for day in (3, 10, 17):
        seed.lesson(b, students[3], rooms[3], date(2031, 2, day), "09:00", "09:35", status=LessonStatus.completed)
    seed.lesson(a, students[3], rooms[3], date(2031, 2, 24), "09:00", "09:35", status=LessonStatus.completed)

    report_absence(db_session, teacher_id=away.id, start_date=ABSENCE_DAY, end_date=ABSENCE_DAY, reported_by=admin)
    db_session.commit()

    return SimpleNamespace(
        admin=admin,
        absent=absent,
        a=a,
        b=b,
        c=c,
        guitarist=guitarist,
        busy=busy,
        away=away,
        retired=retired,
        students=students,
        rooms=rooms,
        lessons=lessons,
    )


def _report(db, world) -> TeacherAbsence:
    absence, _ = report_absence(
        db,
        teacher_id=world.absent.id,
        start_date=ABSENCE_DAY,
        end_date=ABSENCE_DAY,
        reason="Flu",
        reported_by=world.admin,
    )
    db.commit()
    return absence


def _broadcast(db, world, absence, teachers=None):
    teachers = teachers or [world.a, world.b, world.c]
    requests = create_substitute_requests(
        db,
        absence_id=absence.id,
        lesson_ids=[lesson.id for lesson in world.lessons],
        substitute_teacher_ids=[teacher.id for teacher in teachers],
        broadcast=True,
    )
    db.commit()
    return requests


def _request_for(requests, lesson, teacher) -> SubstituteRequest:
    return next(item for item in requests if item.lesson_id == lesson.id and item.substitute_teacher_id == teacher.id)


def _respond(db, world, request, teacher, decision, **extra):
    return respond_to_request(
        db,
        request_id=request.id,
        responder=teacher,
        acting_user=db.get(type(world.admin), teacher.user_id),
        decision=decision,
        **extra,
    )


def _notifications(db, user_id, notification_type=None) -> list[Notification]:
    query = select(Notification).where(Notification.user_id == user_id)
    if notification_type is not None:
        query = query.where(Notification.notification_type == notification_type)
    return list(db.execute(query).scalars())


def test_report_absence_returns_scheduled_lessons_in_range(db_session, world):
    absence, affected = report_absence(
        db_session,
        teacher_id=world.absent.id,
        start_date=ABSENCE_DAY,
        end_date=ABSENCE_DAY,
        reason="Flu",
        reported_by=world.admin,
    )

    assert absence.status == AbsenceStatus.pending
    assert absence.reported_by_id == world.admin.id
    assert [lesson.id for lesson in affected] == [lesson.id for lesson in world.lessons]

    with pytest.raises(ValidationError):
        report_absence(
            db_session,
            teacher_id=world.absent.id,
            start_date=ABSENCE_DAY,
            end_date=date(2031, 3, 1),
            reported_by=world.admin,
        )
    with pytest.raises(ResourceNotFoundError):
        report_absence(
            db_session, teacher_id="nobody", start_date=ABSENCE_DAY, end_date=ABSENCE_DAY, reported_by=world.admin
        )


def test_candidates_exclude_unavailable_teachers_and_rank_by_experience(db_session, world):
    lesson = world.lessons[1]

    candidates = find_substitute_candidates(
        db_session,
        instrument="PIANO",
        lesson_date=lesson.lesson_date,
        start_time=lesson.start_time,
        end_time=lesson.end_time,
        original_teacher_id=world.absent.id,
    )

    assert [item.teacher.id for item in candidates] == [world.b.id, world.a.id, world.c.id]
    assert [item.completed_lessons for item in candidates] == [3, 1, 0]


def test_candidate_ranking_is_pluggable(db_session, world):
    lesson = world.lessons[0]

    candidates = find_substitute_candidates(
        db_session,
        instrument="piano",
        lesson_date=lesson.lesson_date,
        start_time=lesson.start_time,
        end_time=lesson.end_time,
        original_teacher_id=world.absent.id,
        rank=lambda items: sorted(items, key=lambda item: item.name, reverse=True),
    )

    # Eli is free at 09:00; his lesson starts at 10:15.
    assert [item.name for item in candidates] == ["Eli Busy", "Carmel Cohen", "Bella Baron", "Avi Alon"]


def test_single_target_request(db_session, world):
    absence = _report(db_session, world)

    requests = create_substitute_requests(
        db_session,
        absence_id=absence.id,
        lesson_ids=[world.lessons[0].id],
        substitute_teacher_ids=[world.a.id],
    )

    assert len(requests) == 1
    request = requests[0]
    assert request.status == SubstituteRequestStatus.awaiting_approval
    assert request.broadcast_group_id is None
    assert request.original_teacher_id == world.absent.id
    assert (request.start_time, request.end_time, request.room_id) == ("09:00", "09:45", world.rooms[0].id)
    notes = _notifications(db_session, world.a.user_id, NotificationType.substitute_request)
    assert len(notes) == 1
    assert "1 lesson" in notes[0].message


def test_single_target_mode_rejects_several_teachers(db_session, world):
    absence = _report(db_session, world)

    with pytest.raises(ValidationError):
        create_substitute_requests(
            db_session,
            absence_id=absence.id,
            lesson_ids=[world.lessons[0].id],
            substitute_teacher_ids=[world.a.id, world.b.id],
        )


def test_broadcast_creates_one_group_per_lesson(db_session, world):
    absence = _report(db_session, world)

    requests = _broadcast(db_session, world, absence)

    assert len(requests) == 9
    groups = {}
    for request in requests:
        groups.setdefault(request.broadcast_group_id, set()).add(request.lesson_id)
    assert len(groups) == 3
    assert all(len(lesson_ids) == 1 for lesson_ids in groups.values())
    for teacher in (world.a, world.b, world.c):
        notes = _notifications(db_session, teacher.user_id, NotificationType.substitute_request)
        assert len(notes) == 1
        assert "3 lessons" in notes[0].message


def test_create_requests_validates_inputs(db_session, world, seed):
    absence = _report(db_session, world)
    foreign = seed.lesson(world.a, world.students[3], world.rooms[3], ABSENCE_DAY, "15:00", "15:35")

    with pytest.raises(ValidationError):
        create_substitute_requests(
            db_session,
            absence_id=absence.id,
            lesson_ids=[world.lessons[0].id],
            substitute_teacher_ids=[world.absent.id],
        )
    with pytest.raises(ValidationError):
        create_substitute_requests(
            db_session, absence_id=absence.id, lesson_ids=[foreign.id], substitute_teacher_ids=[world.b.id]
        )
    with pytest.raises(ResourceNotFoundError):
        create_substitute_requests(
            db_session, absence_id=absence.id, lesson_ids=[world.lessons[0].id], substitute_teacher_ids=["ghost"]
        )
    with pytest.raises(ResourceNotFoundError):
        create_substitute_requests(
            db_session, absence_id="ghost", lesson_ids=[world.lessons[0].id], substitute_teacher_ids=[world.a.id]
        )
    with pytest.raises(ValidationError):
        create_substitute_requests(db_session, absence_id=absence.id, lesson_ids=[], substitute_teacher_ids=[world.a.id])

    create_substitute_requests(
        db_session, absence_id=absence.id, lesson_ids=[world.lessons[0].id], substitute_teacher_ids=[world.a.id]
    )
    db_session.commit()
    with pytest.raises(ValidationError):
        create_substitute_requests(
            db_session, absence_id=absence.id, lesson_ids=[world.lessons[0].id], substitute_teacher_ids=[world.a.id]
        )


def test_decline_only_touches_the_declined_request(db_session, world):
    absence = _report(db_session, world)
    requests = _broadcast(db_session, world, absence)
    declined = _request_for(requests, world.lessons[1], world.a)

    outcome = _respond(db_session, world, declined, world.a, "declined", notes="Busy")
    db_session.commit()

    assert outcome.request.status == SubstituteRequestStatus.declined
    assert outcome.request.responded_at is not None
    others = [item for item in requests if item.id != declined.id]
    db_session.expire_all()
    assert all(item.status == SubstituteRequestStatus.awaiting_approval for item in others)
    assert db_session.get(Lesson, world.lessons[1].id).teacher_id == world.absent.id
    assert len(_notifications(db_session, world.admin.id, NotificationType.substitute_declined)) == 1


def test_responder_must_be_the_addressee(db_session, world):
    absence = _report(db_session, world)
    requests = _broadcast(db_session, world, absence)

    with pytest.raises(ForbiddenError):
        _respond(db_session, world, _request_for(requests, world.lessons[0], world.b), world.a, "approved")
    with pytest.raises(ForbiddenError):
        respond_to_request(
            db_session,
            request_id=requests[0].id,
            responder=None,
            acting_user=world.admin,
            decision="approved",
        )
    with pytest.raises(ResourceNotFoundError):
        _respond(db_session, world, SimpleNamespace(id="ghost"), world.a, "approved")


def test_first_broadcast_approval_wins(db_session, world):
    absence = _report(db_session, world)
    requests = _broadcast(db_session, world, absence)
    lesson = world.lessons[1]
    winner = _request_for(requests, lesson, world.b)

    outcome = _respond(db_session, world, winner, world.b, "approved")
    db_session.commit()
    db_session.expire_all()

    assert outcome.request.status == SubstituteRequestStatus.approved
    assert outcome.request.approved_by_id == world.b.user_id
    assert outcome.request.approved_at is not None
    reassigned = db_session.get(Lesson, lesson.id)
    assert reassigned.teacher_id == world.b.id
    assert reassigned.version == 2
    assert (reassigned.start_time, reassigned.room_id, reassigned.student_id) == (
        "10:00",
        world.rooms[1].id,
        world.students[1].id,
    )

    losers = [_request_for(requests, lesson, world.a), _request_for(requests, lesson, world.c)]
    assert {item.id for item in outcome.cancelled_siblings} == {item.id for item in losers}
    for loser in losers:
        refreshed = db_session.get(SubstituteRequest, loser.id)
        assert refreshed.status == SubstituteRequestStatus.cancelled
        assert refreshed.notes == SIBLING_APPROVED_NOTE
    untouched = [item for item in requests if item.lesson_id != lesson.id]
    assert all(
        db_session.get(SubstituteRequest, item.id).status == SubstituteRequestStatus.awaiting_approval
        for item in untouched
    )

    for teacher in (world.a, world.c):
        assert len(_notifications(db_session, teacher.user_id, NotificationType.substitute_request_cancelled)) == 1
    assert len(_notifications(db_session, world.absent.user_id, NotificationType.substitute_approved)) == 1
    assert len(_notifications(db_session, world.students[1].user_id, NotificationType.teacher_changed)) == 1

    with pytest.raises(LessonAlreadyCoveredError):
        _respond(db_session, world, losers[0], world.a, "approved")
    db_session.rollback()
    with pytest.raises(LessonAlreadyCoveredError):
        _respond(db_session, world, losers[1], world.c, "declined")
    db_session.rollback()
    assert db_session.get(Lesson, lesson.id).teacher_id == world.b.id


def test_lost_compare_and_swap_reports_already_covered(db_session, world):
    absence = _report(db_session, world)
    request = create_substitute_requests(
        db_session, absence_id=absence.id, lesson_ids=[world.lessons[0].id], substitute_teacher_ids=[world.a.id]
    )[0]
    db_session.commit()

    # Another writer reassigns the lesson between the read and the swap.
    lesson = db_session.get(Lesson, world.lessons[0].id)
    lesson.teacher_id = world.c.id
    db_session.commit()

    with pytest.raises(LessonAlreadyCoveredError):
        _respond(db_session, world, request, world.a, "approved")
    db_session.rollback()

    assert db_session.get(SubstituteRequest, request.id).status == SubstituteRequestStatus.awaiting_approval


def test_approval_refuses_a_lesson_moved_after_the_offer(db_session, world):
    absence = _report(db_session, world)
    request = create_substitute_requests(
        db_session, absence_id=absence.id, lesson_ids=[world.lessons[0].id], substitute_teacher_ids=[world.a.id]
    )[0]
    db_session.commit()
    update_lesson(
        db_session,
        db_session.get(Lesson, world.lessons[0].id),
        {"lesson_date": date(2031, 4, 1), "start_time": "15:00", "end_time": "15:45"},
    )
    db_session.commit()

    with pytest.raises(ConflictError) as excinfo:
        _respond(db_session, world, request, world.a, "approved")
    db_session.rollback()

    assert not isinstance(excinfo.value, LessonAlreadyCoveredError)
    assert excinfo.value.details["lesson_date"] == "2031-04-01"
    moved = db_session.get(Lesson, world.lessons[0].id)
    assert (moved.teacher_id, moved.version) == (world.absent.id, 2)
    assert db_session.get(SubstituteRequest, request.id).status == SubstituteRequestStatus.awaiting_approval


def test_swap_misses_when_the_slot_changes_underneath(db_session, world):
    absence = _report(db_session, world)
    request = create_substitute_requests(
        db_session, absence_id=absence.id, lesson_ids=[world.lessons[2].id], substitute_teacher_ids=[world.b.id]
    )[0]
    db_session.commit()
    db_session.get(Lesson, world.lessons[2].id)
    # Another writer moves the lesson; the loaded instance still shows 11:00.
    db_session.execute(
        update(Lesson)
        .where(Lesson.id == world.lessons[2].id)
        .values(start_time="13:00", end_time="13:45")
        .execution_options(synchronize_session=False)
    )
    db_session.commit()

    with pytest.raises(ConflictError) as excinfo:
        _respond(db_session, world, request, world.b, "approved")
    db_session.rollback()

    assert not isinstance(excinfo.value, LessonAlreadyCoveredError)
    assert excinfo.value.details["start_time"] == "13:00"
    assert db_session.get(Lesson, world.lessons[2].id).teacher_id == world.absent.id


def test_approval_rechecks_substitute_availability(db_session, world, seed):
    absence = _report(db_session, world)
    request = create_substitute_requests(
        db_session, absence_id=absence.id, lesson_ids=[world.lessons[2].id], substitute_teacher_ids=[world.a.id]
    )[0]
    db_session.commit()
    seed.lesson(world.a, world.students[3], world.rooms[3], ABSENCE_DAY, "11:30", "12:00")

    with pytest.raises(ConflictError) as excinfo:
        _respond(db_session, world, request, world.a, "approved")

    assert excinfo.value.details["resource"] == "teacher"
    assert not isinstance(excinfo.value, LessonAlreadyCoveredError)


def test_resolved_request_cannot_transition_again(db_session, world):
    absence = _report(db_session, world)
    request = create_substitute_requests(
        db_session, absence_id=absence.id, lesson_ids=[world.lessons[0].id], substitute_teacher_ids=[world.a.id]
    )[0]
    _respond(db_session, world, request, world.a, "approved")
    db_session.commit()

    for decision in ("approved", "declined"):
        with pytest.raises(ConflictError) as excinfo:
            _respond(db_session, world, request, world.a, decision)
        assert not isinstance(excinfo.value, LessonAlreadyCoveredError)


def test_absence_status_is_derived_from_coverage(db_session, world):
    absence = _report(db_session, world)
    assert absence_coverage_status(db_session, absence) == AbsenceStatus.pending

    requests = _broadcast(db_session, world, absence)
    assert absence_coverage_status(db_session, absence) == AbsenceStatus.coverage_needed

    _respond(db_session, world, _request_for(requests, world.lessons[1], world.b), world.b, "approved")
    db_session.commit()
    assert absence_coverage_status(db_session, absence) == AbsenceStatus.partially_covered

    _respond(db_session, world, _request_for(requests, world.lessons[0], world.a), world.a, "approved")
    _respond(db_session, world, _request_for(requests, world.lessons[2], world.c), world.c, "approved")
    db_session.commit()
    assert absence_coverage_status(db_session, absence) == AbsenceStatus.fully_covered

    quiet, _ = report_absence(
        db_session,
        teacher_id=world.c.id,
        start_date=date(2031, 6, 1),
        end_date=date(2031, 6, 2),
        reported_by=world.admin,
    )
    assert absence_coverage_status(db_session, quiet) == AbsenceStatus.fully_covered


def test_cancelling_an_absence_withdraws_open_requests(db_session, world):
    absence = _report(db_session, world)
    requests = _broadcast(db_session, world, absence)

    update_absence(db_session, absence, status=AbsenceStatus.cancelled)
    db_session.commit()
    db_session.expire_all()

    assert absence_coverage_status(db_session, absence) == AbsenceStatus.cancelled
    assert all(
        db_session.get(SubstituteRequest, item.id).status == SubstituteRequestStatus.cancelled for item in requests
    )
    assert len(_notifications(db_session, world.a.user_id, NotificationType.substitute_request_cancelled)) == 1
    with pytest.raises(ValidationError):
        update_absence(db_session, absence, status=AbsenceStatus.fully_covered)


def test_delete_absence_is_refused_once_a_request_was_approved(db_session, world):
    absence = _report(db_session, world)
    requests = _broadcast(db_session, world, absence)
    _respond(db_session, world, _request_for(requests, world.lessons[0], world.a), world.a, "approved")
    db_session.commit()

    with pytest.raises(ValidationError):
        delete_absence(db_session, absence)

    other, _ = report_absence(
        db_session, teacher_id=world.c.id, start_date=ABSENCE_DAY, end_date=ABSENCE_DAY, reported_by=world.admin
    )
    db_session.commit()
    delete_absence(db_session, other)
    db_session.commit()
    assert db_session.get(TeacherAbsence, other.id) is None
    remaining = db_session.execute(
        select(func.count(SubstituteRequest.id)).where(SubstituteRequest.absence_id == absence.id)
    ).scalar_one()
    assert remaining == 9
