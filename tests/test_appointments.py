"""
Tests for appointment booking, token allocation and the daily queue
"""
import threading
from datetime import date, time, datetime, timedelta

import pytest

from portal.core.exceptions import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from portal.database import SessionLocal
from portal.models import (
    Appointment,
    AppointmentNotification,
    AppointmentStatus,
    AppointmentTokenCounter,
    Notification,
    Service,
    UserRole,
)
from portal.schemas.appointment import AppointmentCreate
from portal.services.appointment_service import (
    AppointmentService,
    display_time,
    format_token,
    generate_slots,
)

MARCH_FIRST = date(2025, 3, 1)


def _book(db_session, student_id, service_id, at: time, on: date = MARCH_FIRST) -> Appointment:
    return AppointmentService(db_session).book(AppointmentCreate(
        student_id=student_id,
        service_id=service_id,
        appointment_date=on,
        appointment_time=at
    ))


def _insert(db_session, student_id, service_id, token, at: time, status: str, on: date = MARCH_FIRST) -> Appointment:
    appointment = Appointment(
        student_id=student_id,
        service_id=service_id,
        appointment_date=on,
        appointment_time=at,
        token_number=token,
        status=status
    )
    db_session.add(appointment)
    db_session.commit()
    return appointment


class TestTokenFormatting:
    """Pure helpers"""

    def test_format_token(self):
        assert format_token(MARCH_FIRST, 3) == 'APT20250301003'
        assert format_token(date(2025, 12, 31), 120) == 'APT20251231120'

    def test_display_time(self):
        assert display_time(time(9, 0)) == '9:00 AM'
        assert display_time(time(12, 30)) == '12:30 PM'
        assert display_time(time(16, 30)) == '4:30 PM'

    def test_default_slots_cover_the_working_day(self):
        slots = generate_slots()

        assert slots[0] == time(9, 0)
        assert slots[-1] == time(16, 30)
        assert len(slots) == 16


class TestBooking:
    """Booking a slot"""

    def test_third_booking_of_the_day_gets_sequence_three(self, db_session, student_user, service):
        _book(db_session, student_user.id, service.id, time(9, 0))
        _book(db_session, student_user.id, service.id, time(9, 30))

        appointment = _book(db_session, student_user.id, service.id, time(10, 0))

        assert appointment.token_number == 'APT20250301003'
        assert appointment.status == AppointmentStatus.PENDING.value

    def test_counter_is_seeded_from_existing_appointments(self, db_session, student_user, service):
        _insert(db_session, student_user.id, service.id, 'APT20250301001', time(9, 0), 'approved')
        _insert(db_session, student_user.id, service.id, 'APT20250301002', time(9, 30), 'pending')

        appointment = _book(db_session, student_user.id, service.id, time(11, 0))

        assert appointment.token_number == 'APT20250301003'
        counter = db_session.query(AppointmentTokenCounter).filter(
            AppointmentTokenCounter.appointment_date == MARCH_FIRST
        ).one()
        assert counter.last_sequence == 3

    def test_sequences_are_scoped_per_date(self, db_session, student_user, service):
        _book(db_session, student_user.id, service.id, time(9, 0))

        appointment = _book(db_session, student_user.id, service.id, time(9, 0), on=date(2025, 3, 2))

        assert appointment.token_number == 'APT20250302001'

    def test_booking_notifies_student_and_admins(self, db_session, student_user, admin_user, service):
        appointment = _book(db_session, student_user.id, service.id, time(9, 0))

        student_note = db_session.query(Notification).filter(Notification.user_id == student_user.id).one()
        assert student_note.title == 'Appointment Booked'
        assert appointment.token_number in student_note.message
        admin_note = db_session.query(Notification).filter(Notification.user_id == admin_user.id).one()
        assert admin_note.title == 'New Appointment Request'
        assert 'Alice Example requested Academic Advising' in admin_note.message
        audit = db_session.query(AppointmentNotification).filter(
            AppointmentNotification.appointment_id == appointment.id
        ).one()
        assert audit.notification_type == 'confirmation'

    def test_taken_slot_is_conflict(self, db_session, student_user, service, make_user):
        other = make_user(UserRole.STUDENT.value)
        _book(db_session, student_user.id, service.id, time(9, 0))

        with pytest.raises(ConflictError):
            _book(db_session, other.id, service.id, time(9, 0))

        assert db_session.query(Appointment).count() == 1

    def test_cancelled_slot_can_be_rebooked(self, db_session, student_user, service):
        first = _book(db_session, student_user.id, service.id, time(9, 0))
        AppointmentService(db_session).cancel(first.id, student_user.id)

        second = _book(db_session, student_user.id, service.id, time(9, 0))

        assert second.token_number == 'APT20250301002'

    def test_missing_fields_are_invalid(self, db_session, student_user):
        with pytest.raises(InvalidInputError):
            AppointmentService(db_session).book(AppointmentCreate(student_id=student_user.id))

    def test_inactive_service_is_not_found(self, db_session, student_user):
        closed = Service(name='Closed Desk', is_active=False)
        db_session.add(closed)
        db_session.commit()

        with pytest.raises(NotFoundError):
            _book(db_session, student_user.id, closed.id, time(9, 0))

    def test_concurrent_bookings_get_distinct_tokens(self, db_session, student_user, service):
        student_id, service_id = student_user.id, service.id
        db_session.close()

        attempts = 8
        barrier = threading.Barrier(attempts)
        tokens, errors = [], []
        lock = threading.Lock()

        def book_slot(index):
            session = SessionLocal()
            try:
                slot = (datetime.combine(MARCH_FIRST, time(9, 0)) + timedelta(minutes=30 * index)).time()
                barrier.wait()
                appointment = _book(session, student_id, service_id, slot)
                with lock:
                    tokens.append(appointment.token_number)
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=book_slot, args=(i,)) for i in range(attempts)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert sorted(tokens) == [format_token(MARCH_FIRST, n) for n in range(1, attempts + 1)]

    def test_concurrent_bookings_of_one_slot_admit_one(self, db_session, student_user, service):
        student_id, service_id = student_user.id, service.id
        db_session.close()

        attempts = 6
        barrier = threading.Barrier(attempts)
        booked, errors = [], []
        lock = threading.Lock()

        def book_same_slot():
            session = SessionLocal()
            try:
                barrier.wait()
                appointment = _book(session, student_id, service_id, time(10, 0))
                with lock:
                    booked.append(appointment.token_number)
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=book_same_slot) for _ in range(attempts)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(booked) == 1
        assert len(errors) == attempts - 1
        assert all(isinstance(e, ConflictError) and e.code == 'SLOT_TAKEN' for e in errors)
        check = SessionLocal()
        try:
            assert check.query(Appointment).filter(Appointment.appointment_time == time(10, 0)).count() == 1
        finally:
            check.close()


class TestAvailableSlots:
    """Slot listing"""

    def test_booked_slot_is_unavailable(self, db_session, student_user, service):
        _book(db_session, student_user.id, service.id, time(9, 30))

        slots = AppointmentService(db_session).list_available_slots(service.id, MARCH_FIRST)

        by_time = {slot.time: slot for slot in slots}
        assert by_time['09:30:00'].available is False
        assert by_time['09:30:00'].display_time == '9:30 AM'
        assert by_time['09:00:00'].available is True
        assert len(slots) == 16

    def test_requires_service_and_date(self, db_session):
        with pytest.raises(InvalidInputError):
            AppointmentService(db_session).list_available_slots(None, MARCH_FIRST)


class TestStatusTransitions:
    """Admin status updates follow the appointment state machine"""

    def test_approve_then_complete(self, db_session, student_user, service):
        appointment = _book(db_session, student_user.id, service.id, time(9, 0))
        appointment_service = AppointmentService(db_session)

        appointment_service.decide_status(appointment.id, 'approved', admin_notes='Bring ID')
        completed = appointment_service.decide_status(appointment.id, AppointmentStatus.COMPLETED)

        assert completed.status == AppointmentStatus.COMPLETED.value
        updates = db_session.query(Notification).filter(
            Notification.user_id == student_user.id,
            Notification.title == 'Appointment Status Update'
        ).order_by(Notification.id).all()
        assert [u.message for u in updates] == [
            'Your appointment for Academic Advising on 2025-03-01 has been approved.',
            'Your appointment for Academic Advising has been completed.',
        ]
        assert updates[0].type == 'success'

    def test_status_update_without_notes_keeps_existing_notes(self, db_session, student_user, service):
        appointment = _book(db_session, student_user.id, service.id, time(9, 0))
        appointment_service = AppointmentService(db_session)

        appointment_service.decide_status(appointment.id, 'approved', admin_notes='Bring ID')
        completed = appointment_service.decide_status(appointment.id, 'completed')

        assert completed.admin_notes == 'Bring ID'

    def test_rejection_sends_error_notification(self, db_session, student_user, service):
        appointment = _book(db_session, student_user.id, service.id, time(9, 0))

        AppointmentService(db_session).decide_status(appointment.id, 'rejected')

        update = db_session.query(Notification).filter(Notification.title == 'Appointment Status Update').one()
        assert update.type == 'error'
        assert update.message.endswith('has been rejected.')

    def test_no_show_sends_no_notification(self, db_session, student_user, service):
        appointment = _book(db_session, student_user.id, service.id, time(9, 0))
        appointment_service = AppointmentService(db_session)
        appointment_service.decide_status(appointment.id, 'approved')

        appointment_service.decide_status(appointment.id, 'no_show')

        updates = db_session.query(Notification).filter(Notification.title == 'Appointment Status Update').count()
        assert updates == 1

    @pytest.mark.parametrize('start, target', [
        ('pending', 'completed'),
        ('pending', 'no_show'),
        ('completed', 'approved'),
        ('cancelled', 'approved'),
        ('rejected', 'pending'),
    ])
    def test_invalid_transition_is_conflict(self, db_session, student_user, service, start, target):
        appointment = _insert(db_session, student_user.id, service.id, 'APT20250301001', time(9, 0), start)

        with pytest.raises(ConflictError):
            AppointmentService(db_session).decide_status(appointment.id, target)

        db_session.refresh(appointment)
        assert appointment.status == start

    def test_unknown_status_is_invalid(self, db_session, student_user, service):
        appointment = _book(db_session, student_user.id, service.id, time(9, 0))

        with pytest.raises(InvalidInputError):
            AppointmentService(db_session).decide_status(appointment.id, 'archived')

    def test_missing_appointment_is_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            AppointmentService(db_session).decide_status(404, 'approved')


class TestCancellation:
    """Student cancellation"""

    def test_owner_can_cancel(self, db_session, student_user, service):
        appointment = _book(db_session, student_user.id, service.id, time(9, 0))

        cancelled = AppointmentService(db_session).cancel(appointment.id, student_user.id)

        assert cancelled.status == AppointmentStatus.CANCELLED.value

    def test_other_student_is_forbidden(self, db_session, student_user, service, make_user):
        appointment = _book(db_session, student_user.id, service.id, time(9, 0))
        intruder = make_user(UserRole.STUDENT.value)

        with pytest.raises(ForbiddenError):
            AppointmentService(db_session).cancel(appointment.id, intruder.id)

        db_session.refresh(appointment)
        assert appointment.status == AppointmentStatus.PENDING.value

    def test_completed_appointment_cannot_be_cancelled(self, db_session, student_user, service):
        appointment = _insert(db_session, student_user.id, service.id, 'APT20250301001', time(9, 0), 'completed')

        with pytest.raises(ConflictError):
            AppointmentService(db_session).cancel(appointment.id, student_user.id)


class TestQueueAndStats:
    """Today's queue and the admin overview"""

    def test_queue_orders_live_appointments_by_time(self, db_session, student_user, service):
        _insert(db_session, student_user.id, service.id, 'APT20250301003', time(10, 0), 'cancelled')
        _insert(db_session, student_user.id, service.id, 'APT20250301002', time(9, 30), 'pending')
        _insert(db_session, student_user.id, service.id, 'APT20250301001', time(9, 0), 'approved')

        queue = AppointmentService(db_session).queue_today(today=MARCH_FIRST)

        assert [(entry.token_number, entry.queue_position) for entry in queue] == [
            ('APT20250301001', 1),
            ('APT20250301002', 2),
        ]
        assert queue[0].service_name == 'Academic Advising'
        assert queue[0].student_name == 'Alice Example'

    def test_queue_ignores_other_days(self, db_session, student_user, service):
        _insert(db_session, student_user.id, service.id, 'APT20250302001', time(9, 0), 'approved', on=date(2025, 3, 2))

        assert AppointmentService(db_session).queue_today(today=MARCH_FIRST) == []

    def test_stats_overview(self, db_session, student_user, service):
        other_service = Service(name='Career Services', is_active=True)
        db_session.add(other_service)
        db_session.commit()
        _insert(db_session, student_user.id, service.id, 'APT20250301001', time(9, 0), 'approved')
        _insert(db_session, student_user.id, service.id, 'APT20250301002', time(9, 30), 'pending')
        _insert(db_session, student_user.id, service.id, 'APT20250302001', time(9, 0), 'cancelled', on=date(2025, 3, 2))

        stats = AppointmentService(db_session).get_stats(today=MARCH_FIRST)

        assert stats.overview.total_appointments == 3
        assert stats.overview.approved == 1
        assert stats.overview.pending == 1
        assert stats.overview.cancelled == 1
        assert stats.overview.completed == 0
        assert stats.overview.today == 2
        assert [(row.name, row.count) for row in stats.by_service] == [
            ('Academic Advising', 3),
            ('Career Services', 0),
        ]
