"""Tests for audit sinks.

Audit is a side effect: sink failures must never fail or undo the
booking or dispensing operation that triggered them.
"""

import logging
from datetime import date
from uuid import uuid4

import pytest
from pydantic import TypeAdapter, ValidationError

from app.models.audit_event import ActivityType
from app.schemas.audit_event import (
    AuditEntry,
    AuditEventRead,
    AuditPayload,
    BookingStatusChangedPayload,
    MedicationDispensedPayload,
    SessionBookedPayload,
)
from app.services.audit import AuditService, DatabaseAuditSink, LoggingAuditSink, emit_audit
from app.services.dispensation import DispensationEligibilityEngine
from app.services.locks import KeyedLocks
from app.services.session_booking import SessionCapacityManager


def booked_entry(target_id: str | None = None) -> AuditEntry:
    booking_id = target_id or str(uuid4())
    return AuditEntry(
        activity_type=ActivityType.SESSION_BOOKED,
        actor_id=str(uuid4()),
        target_type="session_booking",
        target_id=booking_id,
        description="Session booking created",
        payload=SessionBookedPayload(
            session_id=str(uuid4()),
            booking_id=booking_id,
            subject_id=str(uuid4()),
            booked_count=1,
            capacity=10,
        ),
    )


class TestEmitAudit:

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, failing_audit_sink, caplog):
        with caplog.at_level(logging.ERROR, logger="app.services.audit"):
            await emit_audit(failing_audit_sink, booked_entry())

        assert failing_audit_sink.attempts == 1
        assert "Audit write failed" in caplog.text

    @pytest.mark.asyncio
    async def test_logging_sink_writes_audit_logger(self, caplog):
        entry = booked_entry()

        with caplog.at_level(logging.INFO, logger="audit"):
            await LoggingAuditSink().append(entry)

        assert "activity=session_booked" in caplog.text
        assert entry.target_id in caplog.text


class TestFailingSinkDoesNotBreakOperations:

    @pytest.mark.asyncio
    async def test_booking_survives_sink_failure(
        self, async_session, failing_audit_sink, program_session
    ):
        session_id = program_session.id
        manager = SessionCapacityManager(
            async_session, audit_sink=failing_audit_sink, locks=KeyedLocks()
        )

        booking = await manager.create_booking(session_id, str(uuid4()))
        await manager.cancel_booking(booking.id)

        assert failing_audit_sink.attempts == 2
        reloaded = await manager.get_session(session_id)
        assert reloaded.booked_count == 0

    @pytest.mark.asyncio
    async def test_dispense_survives_sink_failure(
        self, async_session, failing_audit_sink, test_patient, daily_medication, clinic_tz
    ):
        patient_id = test_patient.id
        engine = DispensationEligibilityEngine(
            async_session, audit_sink=failing_audit_sink, locks=KeyedLocks(), tz=clinic_tz
        )

        dispensation = await engine.dispense(
            patient_id, daily_medication.id, date(2024, 1, 10), 1
        )

        assert failing_audit_sink.attempts == 1
        assert [d.id for d in await engine.list_dispensations(patient_id)] == [dispensation.id]


class TestDatabaseAuditSink:

    @pytest.mark.asyncio
    async def test_entries_persist_with_typed_payload(
        self, session_factory, async_session, program_session
    ):
        session_id = program_session.id
        manager = SessionCapacityManager(
            async_session,
            audit_sink=DatabaseAuditSink(session_factory),
            locks=KeyedLocks(),
        )
        actor_id = str(uuid4())

        booking = await manager.create_booking(session_id, str(uuid4()), actor_id=actor_id)
        await manager.update_booking_status(booking.id, "attended", actor_id=actor_id)

        history = await AuditService(async_session).get_entity_history(
            "session_booking", booking.id
        )

        assert {event.activity_type for event in history} == {
            ActivityType.SESSION_BOOKED,
            ActivityType.BOOKING_STATUS_CHANGED,
        }
        assert all(event.actor_id == actor_id for event in history)

        reads = [AuditEventRead.model_validate(event) for event in history]
        changed = next(r for r in reads if r.activity_type == ActivityType.BOOKING_STATUS_CHANGED)
        assert isinstance(changed.payload, BookingStatusChangedPayload)
        assert changed.payload.to_status == "attended"

    @pytest.mark.asyncio
    async def test_history_limit(self, session_factory, async_session):
        sink = DatabaseAuditSink(session_factory)
        target_id = str(uuid4())
        for _ in range(3):
            await sink.append(booked_entry(target_id))

        history = await AuditService(async_session).get_entity_history(
            "session_booking", target_id, limit=2
        )

        assert len(history) == 2


class TestPayloadDiscriminator:

    def test_kind_selects_payload_model(self):
        adapter = TypeAdapter(AuditPayload)

        payload = adapter.validate_python(
            {
                "kind": "medication_dispensed",
                "patient_id": "p",
                "medication_id": "m",
                "dispensation_id": "d",
                "dispensed_date": "2024-01-10",
                "next_due_date": "2024-01-11",
                "quantity": 1,
            }
        )

        assert isinstance(payload, MedicationDispensedPayload)
        assert payload.next_due_date == date(2024, 1, 11)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            TypeAdapter(AuditPayload).validate_python({"kind": "nope"})
