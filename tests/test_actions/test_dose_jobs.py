"""
Tests for the batch jobs run by the periodic trigger
"""

import httpx
import pytest
from datetime import date, timedelta
from sqlalchemy.exc import OperationalError

from actions.dose_jobs import (
    generate_doses_for_all_users,
    mark_missed_for_all_users,
    send_low_stock_alerts,
    send_notifications_for_all_users,
)
from exceptions import ConfigurationError, ValidationError
from models import (
    Channel, DoseLog, DoseStatus, Inventory, Medication, NotificationLog, NotificationStatus,
    Prescription, Schedule, TimeFormat, Unit
)
from services.dose_service import dose_service
from tools.notification_service import NotificationType

from tests.conftest import FakeTransport, make_user


class TestGenerateDosesJob:

    @pytest.mark.asyncio
    async def test_fills_rolling_horizon(self, db_session, test_schedule, now):
        result = await generate_doses_for_all_users(now=now, horizon_days=14, db=db_session)

        # Two weeks of MON/WED/FRI at 08:00 and 20:00
        assert result.total == 12
        assert result.success
        assert result.results[0]["schedule_id"] == test_schedule.id

        rerun = await generate_doses_for_all_users(now=now, horizon_days=14, db=db_session)
        assert rerun.total == 0
        assert rerun.results[0]["skipped"] == 12
        assert db_session.query(DoseLog).count() == 12

    @pytest.mark.asyncio
    async def test_as_needed_prescriptions_are_ignored(self, db_session, test_user, test_medication, now):
        prn = Prescription(
            user_id=test_user.id, medication_id=test_medication.id, start_date=date(2025, 3, 1), as_needed=True
        )
        db_session.add(prn)
        db_session.flush()
        db_session.add(Schedule(
            prescription_id=prn.id, timezone="UTC", days_of_week=["MON"], times=["09:00"],
            dose_quantity=1, dose_unit=Unit.TAB
        ))
        db_session.commit()

        result = await generate_doses_for_all_users(now=now, db=db_session)
        assert result.total == 0
        assert result.results == []

    @pytest.mark.asyncio
    async def test_zero_horizon_generates_nothing(self, db_session, test_schedule, now):
        result = await generate_doses_for_all_users(now=now, horizon_days=0, db=db_session)

        assert result.total == 0
        assert result.results[0]["requested"] == 0
        assert db_session.query(DoseLog).count() == 0

    @pytest.mark.asyncio
    async def test_negative_horizon_rejected(self, db_session, test_schedule, now):
        with pytest.raises(ValidationError):
            await generate_doses_for_all_users(now=now, horizon_days=-1, db=db_session)

    @pytest.mark.asyncio
    async def test_storage_failure_is_isolated_to_its_schedule(self, db_session, test_prescription, test_schedule, now, monkeypatch):
        evening = Schedule(
            prescription_id=test_prescription.id, timezone="UTC", days_of_week=["TUE"], times=["21:00"],
            dose_quantity=1, dose_unit=Unit.TAB
        )
        db_session.add(evening)
        db_session.commit()

        materialize = dose_service.materialize

        def flaky(session, prescription, schedule, *args, **kwargs):
            if schedule.id == test_schedule.id:
                raise OperationalError("INSERT INTO dose_logs", {}, Exception("database is locked"))
            return materialize(session, prescription, schedule, *args, **kwargs)

        monkeypatch.setattr(dose_service, "materialize", flaky)
        result = await generate_doses_for_all_users(now=now, horizon_days=7, db=db_session)

        assert not result.success
        assert [e["schedule_id"] for e in result.errors] == [test_schedule.id]
        assert result.total == 1
        assert db_session.query(DoseLog).filter(DoseLog.schedule_id == evening.id).count() == 1

    @pytest.mark.asyncio
    async def test_programming_errors_propagate(self, db_session, test_schedule, now, monkeypatch):
        def broken(*args, **kwargs):
            raise AttributeError("schedule has no attribute 'times'")

        monkeypatch.setattr(dose_service, "materialize", broken)
        with pytest.raises(AttributeError):
            await generate_doses_for_all_users(now=now, horizon_days=7, db=db_session)


class TestMarkMissedJob:

    @pytest.mark.asyncio
    async def test_marks_overdue_doses(self, db_session, make_dose, now):
        overdue = make_dose(now - timedelta(hours=1))
        upcoming = make_dose(now + timedelta(hours=1))
        taken = make_dose(now - timedelta(hours=3), status=DoseStatus.TAKEN)

        result = await mark_missed_for_all_users(now=now, db=db_session)

        assert result.total == 1
        db_session.refresh(overdue)
        db_session.refresh(upcoming)
        db_session.refresh(taken)
        assert overdue.status == DoseStatus.MISSED
        assert upcoming.status == DoseStatus.SCHEDULED
        assert taken.status == DoseStatus.TAKEN

        rerun = await mark_missed_for_all_users(now=now, db=db_session)
        assert rerun.total == 0
        assert rerun.results == []


class TestSendNotificationsJob:

    @pytest.mark.asyncio
    async def test_only_doses_in_window(self, db_session, test_user, make_dose, fake_transport, now):
        due = make_dose(now + timedelta(minutes=1))
        make_dose(now + timedelta(minutes=5))
        make_dose(now - timedelta(minutes=1))

        result = await send_notifications_for_all_users(now=now, transport=fake_transport, db=db_session)

        assert result.total == 1
        assert len(fake_transport.calls) == 1
        user_id, channel, payload = fake_transport.calls[0]
        assert (user_id, channel) == (test_user.id, Channel.EMAIL)
        assert payload.notification_type == NotificationType.MEDICATION_REMINDER
        assert payload.data == {"medicationName": "Metformin", "scheduledTime": "06:01"}

        log = db_session.query(NotificationLog).one()
        assert log.dose_log_id == due.id
        assert log.status == NotificationStatus.SENT
        assert log.meta["medicationName"] == "Metformin"

    @pytest.mark.asyncio
    async def test_dose_is_notified_once(self, db_session, make_dose, fake_transport, now):
        make_dose(now + timedelta(minutes=2))

        await send_notifications_for_all_users(now=now, transport=fake_transport, db=db_session)
        second = await send_notifications_for_all_users(now=now + timedelta(seconds=30), transport=fake_transport, db=db_session)

        assert second.total == 0
        assert len(fake_transport.calls) == 1

    @pytest.mark.asyncio
    async def test_failed_delivery_is_logged_and_retried(self, db_session, make_dose, now):
        make_dose(now + timedelta(minutes=1))
        failing = FakeTransport(status=NotificationStatus.FAILED)

        result = await send_notifications_for_all_users(now=now, transport=failing, db=db_session)
        assert result.total == 0
        log = db_session.query(NotificationLog).one()
        assert log.status == NotificationStatus.FAILED
        assert log.meta["reason"] == "delivery_failed"

        working = FakeTransport()
        retry = await send_notifications_for_all_users(now=now, transport=working, db=db_session)
        assert retry.total == 1
        assert len(working.calls) == 1

    @pytest.mark.asyncio
    async def test_unconfigured_channel_is_not_logged(self, db_session, make_dose, now):
        make_dose(now + timedelta(minutes=1))
        transport = FakeTransport(raises=ConfigurationError("Email delivery is not configured"))

        result = await send_notifications_for_all_users(now=now, transport=transport, db=db_session)

        assert result.unconfigured == 1
        assert result.success
        assert db_session.query(NotificationLog).count() == 0

    @pytest.mark.asyncio
    async def test_transport_exception_is_recorded(self, db_session, make_dose, now):
        make_dose(now + timedelta(minutes=1))
        transport = FakeTransport(raises=httpx.ConnectError("connection reset"))

        result = await send_notifications_for_all_users(now=now, transport=transport, db=db_session)

        assert not result.success
        assert result.errors[0]["error"] == "connection reset"
        assert db_session.query(NotificationLog).one().status == NotificationStatus.FAILED

    @pytest.mark.asyncio
    async def test_sms_is_skipped_and_channels_fan_out(self, db_session, test_user, make_dose, fake_transport, now):
        test_user.settings.default_channels = ["PUSH", "SMS", "EMAIL"]
        db_session.commit()
        make_dose(now + timedelta(minutes=1))

        result = await send_notifications_for_all_users(now=now, transport=fake_transport, db=db_session)

        assert result.total == 2
        assert [call[1] for call in fake_transport.calls] == [Channel.PUSH, Channel.EMAIL]

    @pytest.mark.asyncio
    async def test_time_rendered_in_user_format(self, db_session, fake_transport, now):
        berlin = make_user(db_session, "kim@example.com", tz="Europe/Berlin", time_format=TimeFormat.H12)
        medication = Medication(user_id=berlin.id, name="Levothyroxine")
        db_session.add(medication)
        db_session.flush()
        prescription = Prescription(user_id=berlin.id, medication_id=medication.id, start_date=date(2025, 3, 1))
        db_session.add(prescription)
        db_session.flush()
        db_session.add(DoseLog(
            prescription_id=prescription.id,
            scheduled_for=(now + timedelta(minutes=1)).replace(tzinfo=None),
            slot_for=(now + timedelta(minutes=1)).replace(tzinfo=None),
            status=DoseStatus.SCHEDULED,
        ))
        db_session.commit()

        await send_notifications_for_all_users(now=now, transport=fake_transport, db=db_session)

        # 06:01 UTC is 07:01 in Berlin
        assert fake_transport.calls[0][2].data["scheduledTime"] == "7:01 AM"


class TestLowStockAlerts:

    def _drain(self, db_session, medication, qty=5):
        inventory = db_session.query(Inventory).filter(Inventory.medication_id == medication.id).one()
        inventory.current_qty = qty
        db_session.commit()

    @pytest.mark.asyncio
    async def test_one_alert_per_local_day(self, db_session, test_user, test_medication, fake_transport, now):
        self._drain(db_session, test_medication)

        first = await send_low_stock_alerts(now=now, transport=fake_transport, db=db_session)
        assert first.total == 1
        payload = fake_transport.calls[0][2]
        assert payload.notification_type == NotificationType.LOW_STOCK_ALERT
        assert payload.data["medicationsCount"] == 1
        assert payload.data["names"] == "Metformin"

        later_today = await send_low_stock_alerts(now=now + timedelta(hours=3), transport=fake_transport, db=db_session)
        assert later_today.total == 0

        tomorrow = await send_low_stock_alerts(now=now + timedelta(days=1), transport=fake_transport, db=db_session)
        assert tomorrow.total == 1
        assert len(fake_transport.calls) == 2

    @pytest.mark.asyncio
    async def test_stock_above_threshold_is_quiet(self, db_session, test_medication, fake_transport, now):
        result = await send_low_stock_alerts(now=now, transport=fake_transport, db=db_session)
        assert result.total == 0
        assert fake_transport.calls == []

    @pytest.mark.asyncio
    async def test_alert_meta_lists_medications(self, db_session, test_user, test_medication, fake_transport, now):
        self._drain(db_session, test_medication, qty=10)

        await send_low_stock_alerts(now=now, transport=fake_transport, db=db_session)

        log = db_session.query(NotificationLog).one()
        assert log.dose_log_id is None
        assert log.meta["type"] == "low_stock_alert"
        assert log.meta["medications"][0]["currentQty"] == 10
