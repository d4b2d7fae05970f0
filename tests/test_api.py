"""HTTP tests for booking and dispensation endpoints.

Checks request validation and the mapping of domain errors onto status
codes: not found 404, bad request 400, validation 422, conflict 409.
"""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.models.audit_event import ActivityType
from app.services.audit import AuditService


def book(client: TestClient, session_id: str, subject_id: str | None = None, **headers):
    return client.post(
        "/api/v1/bookings",
        json={"session_id": session_id, "subject_id": subject_id or str(uuid4())},
        headers=headers,
    )


class TestBookingEndpoints:

    @pytest.mark.asyncio
    async def test_create_booking(self, client, program_session):
        session_id = program_session.id

        response = book(client, session_id)

        assert response.status_code == 201
        data = response.json()
        assert data["session_id"] == session_id
        assert data["status"] == "booked"
        assert data["subject_type"] == "patient"

        session_data = client.get(f"/api/v1/sessions/{session_id}").json()
        assert session_data["booked_count"] == 1
        assert session_data["remaining_capacity"] == 1

    @pytest.mark.asyncio
    async def test_full_session_conflict(self, client, make_program_session):
        program_session = await make_program_session(capacity=1)
        session_id = program_session.id
        assert book(client, session_id).status_code == 201

        response = book(client, session_id)

        assert response.status_code == 409
        data = response.json()
        assert data["error_code"] == "SESSION_FULL"
        assert data["capacity"] == 1
        assert "full" in data["detail"]

    @pytest.mark.asyncio
    async def test_inactive_session_bad_request(self, client, make_program_session):
        program_session = await make_program_session(is_active=False)

        response = book(client, program_session.id)

        assert response.status_code == 400
        assert response.json()["error_code"] == "SESSION_INACTIVE"

    @pytest.mark.asyncio
    async def test_unknown_session_not_found(self, client):
        response = book(client, str(uuid4()))

        assert response.status_code == 404
        assert response.json()["error_code"] == "SESSION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_malformed_ids_rejected(self, client):
        response = client.post(
            "/api/v1/bookings",
            json={"session_id": "not-a-uuid", "subject_id": str(uuid4())},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_booking_conflict(self, client, program_session):
        subject_id = str(uuid4())
        assert book(client, program_session.id, subject_id).status_code == 201

        response = book(client, program_session.id, subject_id)

        assert response.status_code == 409
        assert response.json()["error_code"] == "DUPLICATE_BOOKING"

    @pytest.mark.asyncio
    async def test_cancel_twice(self, client, program_session):
        booking_id = book(client, program_session.id).json()["id"]

        first = client.post(f"/api/v1/bookings/{booking_id}/cancel")
        second = client.post(f"/api/v1/bookings/{booking_id}/cancel")

        assert first.status_code == 200
        assert first.json()["status"] == "cancelled"
        assert second.status_code == 409
        assert second.json()["error_code"] == "BOOKING_ALREADY_CANCELLED"
        assert client.get(f"/api/v1/sessions/{program_session.id}").json()["booked_count"] == 0

    @pytest.mark.asyncio
    async def test_status_update_then_invalid_transition(self, client, program_session):
        booking_id = book(client, program_session.id).json()["id"]

        attended = client.patch(
            f"/api/v1/bookings/{booking_id}",
            json={"status": "attended", "notes": "Arrived on time"},
        )
        cancel = client.patch(f"/api/v1/bookings/{booking_id}", json={"status": "cancelled"})

        assert attended.status_code == 200
        assert attended.json()["notes"] == "Arrived on time"
        assert cancel.status_code == 409
        assert cancel.json()["error_code"] == "INVALID_STATUS_TRANSITION"

    @pytest.mark.asyncio
    async def test_unknown_status_value(self, client, program_session):
        booking_id = book(client, program_session.id).json()["id"]

        response = client.patch(f"/api/v1/bookings/{booking_id}", json={"status": "no_show"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_remove_booking(self, client, program_session):
        booking_id = book(client, program_session.id).json()["id"]

        first = client.delete(f"/api/v1/bookings/{booking_id}")
        second = client.delete(f"/api/v1/bookings/{booking_id}")

        assert first.status_code == 204
        assert second.status_code == 404
        assert second.json()["error_code"] == "BOOKING_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_list_bookings_by_status(self, client, program_session):
        kept = book(client, program_session.id).json()["id"]
        cancelled = book(client, program_session.id).json()["id"]
        client.post(f"/api/v1/bookings/{cancelled}/cancel")

        response = client.get(
            "/api/v1/bookings",
            params={"session_id": program_session.id, "status": "booked"},
        )

        assert response.status_code == 200
        assert [b["id"] for b in response.json()] == [kept]

    @pytest.mark.asyncio
    async def test_reconcile(self, client, make_program_session):
        program_session = await make_program_session(capacity=4, booked_count=3)

        response = client.post(f"/api/v1/sessions/{program_session.id}/reconcile")

        assert response.status_code == 200
        assert response.json()["booked_count"] == 0

    @pytest.mark.asyncio
    async def test_actor_header_recorded_in_audit(self, client, program_session, async_session):
        actor_id = str(uuid4())

        booking_id = book(client, program_session.id, **{"X-Actor-ID": actor_id}).json()["id"]

        history = await AuditService(async_session).get_entity_history(
            "session_booking", booking_id
        )
        assert len(history) == 1
        assert history[0].activity_type == ActivityType.SESSION_BOOKED
        assert history[0].actor_id == actor_id

    @pytest.mark.asyncio
    async def test_malformed_actor_header(self, client, program_session):
        response = book(client, program_session.id, **{"X-Actor-ID": "someone"})

        assert response.status_code == 422


class TestDispensationEndpoints:

    @pytest.mark.asyncio
    async def test_check_dispense_recheck(self, client, test_patient, daily_medication):
        params = {
            "patient_id": test_patient.id,
            "medication_id": daily_medication.id,
            "date": "2024-01-10",
        }

        before = client.get("/api/v1/dispensations/eligibility", params=params)
        created = client.post(
            "/api/v1/dispensations",
            json={
                "patient_id": test_patient.id,
                "medication_id": daily_medication.id,
                "dispensed_date": "2024-01-10",
                "quantity": 1,
            },
        )
        after = client.get("/api/v1/dispensations/eligibility", params=params)

        assert before.status_code == 200
        assert before.json()["eligible"] is True
        assert created.status_code == 201
        assert created.json()["next_due_date"] == "2024-01-11"
        assert after.json()["eligible"] is False
        assert after.json()["next_due_date"] == "2024-01-11"
        assert after.json()["reason"] == "Daily medication already dispensed today"

    @pytest.mark.asyncio
    async def test_second_dispense_conflict(self, client, test_patient, weekly_medication):
        body = {
            "patient_id": test_patient.id,
            "medication_id": weekly_medication.id,
            "dispensed_date": "2024-01-08",
            "quantity": 1,
        }
        assert client.post("/api/v1/dispensations", json=body).status_code == 201

        response = client.post(
            "/api/v1/dispensations", json={**body, "dispensed_date": "2024-01-14"}
        )

        assert response.status_code == 409
        data = response.json()
        assert data["error_code"] == "NOT_ELIGIBLE"
        assert data["next_due_date"] == "2024-01-15"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -3])
    async def test_non_positive_quantity(self, client, test_patient, daily_medication, quantity):
        response = client.post(
            "/api/v1/dispensations",
            json={
                "patient_id": test_patient.id,
                "medication_id": daily_medication.id,
                "dispensed_date": "2024-01-10",
                "quantity": quantity,
            },
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unparseable_date(self, client, test_patient, daily_medication):
        response = client.get(
            "/api/v1/dispensations/eligibility",
            params={
                "patient_id": test_patient.id,
                "medication_id": daily_medication.id,
                "date": "next tuesday",
            },
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "INVALID_DATE"

    @pytest.mark.asyncio
    async def test_medication_of_other_patient(self, client, other_patient, daily_medication):
        response = client.get(
            "/api/v1/dispensations/eligibility",
            params={
                "patient_id": other_patient.id,
                "medication_id": daily_medication.id,
                "date": "2024-01-10",
            },
        )

        assert response.status_code == 404
        assert response.json()["error_code"] == "MEDICATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_history(self, client, test_patient, daily_medication):
        for day in ("2024-01-10", "2024-01-11"):
            client.post(
                "/api/v1/dispensations",
                json={
                    "patient_id": test_patient.id,
                    "medication_id": daily_medication.id,
                    "dispensed_date": day,
                    "quantity": 1,
                },
            )

        response = client.get(f"/api/v1/patients/{test_patient.id}/dispensations")

        assert response.status_code == 200
        assert [d["dispensed_date"] for d in response.json()] == ["2024-01-11", "2024-01-10"]

    @pytest.mark.asyncio
    async def test_aware_datetime_without_timezone(
        self, client, test_patient, daily_medication, monkeypatch
    ):
        monkeypatch.setattr(settings, "eligibility_timezone", None)

        response = client.post(
            "/api/v1/dispensations",
            json={
                "patient_id": test_patient.id,
                "medication_id": daily_medication.id,
                "dispensed_date": "2024-01-10T09:00:00+00:00",
                "quantity": 1,
            },
        )

        assert response.status_code == 500
        assert response.json()["error_code"] == "ELIGIBILITY_TIMEZONE_UNSET"
        history = client.get(f"/api/v1/patients/{test_patient.id}/dispensations")
        assert history.json() == []


class TestAuditEndpoints:

    @pytest.mark.asyncio
    async def test_filter_by_actor(self, client, program_session):
        actor_id = str(uuid4())
        booking_id = book(client, program_session.id, **{"X-Actor-ID": actor_id}).json()["id"]
        client.post(f"/api/v1/bookings/{booking_id}/cancel", headers={"X-Actor-ID": actor_id})
        book(client, program_session.id)

        response = client.get("/api/v1/audit/events", params={"actor_id": actor_id})

        assert response.status_code == 200
        events = response.json()
        assert {e["activity_type"] for e in events} == {"session_booked", "session_cancelled"}
        assert all(e["actor_id"] == actor_id for e in events)

    @pytest.mark.asyncio
    async def test_filter_by_target_type_and_limit(
        self, client, program_session, test_patient, daily_medication
    ):
        book(client, program_session.id)
        book(client, program_session.id)
        client.post(
            "/api/v1/dispensations",
            json={
                "patient_id": test_patient.id,
                "medication_id": daily_medication.id,
                "dispensed_date": "2024-01-10",
                "quantity": 1,
            },
        )

        bookings = client.get("/api/v1/audit/events", params={"target_type": "session_booking"})
        limited = client.get(
            "/api/v1/audit/events", params={"target_type": "session_booking", "limit": 1}
        )
        dispensed = client.get(
            "/api/v1/audit/events", params={"activity_type": "medication_dispensed"}
        )

        assert len(bookings.json()) == 2
        assert len(limited.json()) == 1
        assert len(dispensed.json()) == 1
        assert dispensed.json()[0]["payload"]["kind"] == "medication_dispensed"

    @pytest.mark.asyncio
    async def test_target_history_and_single_event(self, client, program_session):
        booking_id = book(client, program_session.id).json()["id"]
        client.patch(f"/api/v1/bookings/{booking_id}", json={"status": "attended"})

        history = client.get(f"/api/v1/audit/events/session_booking/{booking_id}")

        assert history.status_code == 200
        assert len(history.json()) == 2
        event_id = history.json()[0]["id"]
        single = client.get(f"/api/v1/audit/events/{event_id}")
        assert single.status_code == 200
        assert single.json()["target_id"] == booking_id

    @pytest.mark.asyncio
    async def test_unknown_event(self, client):
        response = client.get(f"/api/v1/audit/events/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["error_code"] == "AUDIT_EVENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_limit_out_of_range(self, client):
        response = client.get("/api/v1/audit/events", params={"limit": 501})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_read_only(self, client):
        response = client.post("/api/v1/audit/events", json={})

        assert response.status_code == 405
