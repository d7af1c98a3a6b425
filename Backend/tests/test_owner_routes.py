"""
Owner management API and onboarding tests.

Run with: pytest tests/test_owner_routes.py -v
"""

import pytest

from bookit import owner_routes
from bookit.models import ServiceStaff
from bookit.onboarding import generate_slug
from bookit.scheduling.errors import StorageUnavailable


# ────────────────────────────────────────────────────────────────
# Onboarding
# ────────────────────────────────────────────────────────────────

class TestSlugGeneration:
    @pytest.mark.parametrize(
        "name, slug",
        [
            ("Salón Luna", "salon-luna"),
            ("Nails & Spa!!!", "nails-spa"),
            ("  Barbería  Don Pepe ", "barberia-don-pepe"),
            ("!!!", "business"),
        ],
    )
    def test_generate_slug(self, name, slug):
        assert generate_slug(name) == slug


class TestCreateBusiness:
    @pytest.mark.asyncio
    async def test_create(self, client):
        response = await client.post(
            "/businesses", json={"name": "Café Bonita", "timezone": "America/New_York"}
        )
        assert response.status_code == 201
        data = response.json()
        assert data["slug"] == "cafe-bonita"
        assert data["timezone"] == "America/New_York"

    @pytest.mark.asyncio
    async def test_default_timezone(self, client):
        response = await client.post("/businesses", json={"name": "Uñas Bellas"})
        assert response.status_code == 201
        assert response.json()["timezone"] == "America/Puerto_Rico"

    @pytest.mark.asyncio
    async def test_slug_collision_gets_suffix(self, client):
        first = await client.post("/businesses", json={"name": "Studio"})
        second = await client.post("/businesses", json={"name": "Studio"})
        assert first.json()["slug"] == "studio"
        assert second.json()["slug"] == "studio-2"

    @pytest.mark.asyncio
    async def test_invalid_timezone(self, client):
        response = await client.post("/businesses", json={"name": "Lost", "timezone": "Mars/Base"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_TIMEZONE"

    @pytest.mark.asyncio
    async def test_blank_name(self, client):
        response = await client.post("/businesses", json={"name": "   "})
        assert response.status_code == 422


# ────────────────────────────────────────────────────────────────
# Services & staff
# ────────────────────────────────────────────────────────────────

class TestServices:
    @pytest.mark.asyncio
    async def test_list(self, client, salon):
        response = await client.get(f"/businesses/{salon.business.id}/services")
        assert response.status_code == 200
        assert sorted(s["name"] for s in response.json()) == ["Color", "Haircut"]

    @pytest.mark.asyncio
    async def test_create_with_staff(self, client, salon):
        business_id, luis_id = salon.business.id, salon.luis.id
        response = await client.post(
            f"/businesses/{business_id}/services",
            json={"name": "Beard Trim", "duration_min": 20, "price_cents": 1500, "staff_ids": [luis_id]},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["staff_ids"] == [luis_id]
        assert data["max_per_slot"] == 1

        # Only Luis is offered for the new service
        slots = await client.get(
            "/book/salon-luna/slots",
            params={"service_id": data["id"], "date": "2030-01-07", "staff_id": salon.ana.id},
        )
        assert slots.status_code == 422

    @pytest.mark.asyncio
    async def test_create_rejects_foreign_staff(self, client, salon):
        response = await client.post(
            f"/businesses/{salon.business.id}/services",
            json={"name": "Beard Trim", "duration_min": 20, "staff_ids": [9999]},
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_create_rejects_negative_buffer(self, client, salon):
        response = await client.post(
            f"/businesses/{salon.business.id}/services",
            json={"name": "Wash", "duration_min": 20, "buffer_after_min": -5},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, client, salon):
        business_id = salon.business.id
        response = await client.post(
            f"/businesses/{business_id}/services", json={"name": "Haircut", "duration_min": 30}
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT"

    @pytest.mark.asyncio
    async def test_rename_onto_existing_name_conflicts(self, client, salon):
        business_id, service_id = salon.business.id, salon.haircut.id
        response = await client.patch(
            f"/businesses/{business_id}/services/{service_id}", json={"name": "Color"}
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT"

        listed = await client.get(f"/businesses/{business_id}/services")
        assert sorted(s["name"] for s in listed.json()) == ["Color", "Haircut"]

    @pytest.mark.asyncio
    async def test_failed_staff_links_leave_no_service(self, client, salon, monkeypatch):
        """The service and its staff links are written in one commit."""
        business_id, luis_id = salon.business.id, salon.luis.id
        real_commit = owner_routes.commit_or_raise

        async def failing_commit(session):
            if any(isinstance(obj, ServiceStaff) for obj in session.new):
                await session.rollback()
                raise StorageUnavailable("Database is unavailable, retry later")
            await real_commit(session)

        monkeypatch.setattr(owner_routes, "commit_or_raise", failing_commit)
        response = await client.post(
            f"/businesses/{business_id}/services",
            json={"name": "Beard Trim", "duration_min": 20, "staff_ids": [luis_id]},
        )
        assert response.status_code == 503

        monkeypatch.undo()
        listed = await client.get(f"/businesses/{business_id}/services")
        assert sorted(s["name"] for s in listed.json()) == ["Color", "Haircut"]

    @pytest.mark.asyncio
    async def test_partial_update(self, client, salon):
        business_id, service_id = salon.business.id, salon.haircut.id
        response = await client.patch(
            f"/businesses/{business_id}/services/{service_id}", json={"price_cents": 4000}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["price_cents"] == 4000
        assert data["name"] == "Haircut"
        assert data["duration_min"] == 30

    @pytest.mark.asyncio
    async def test_partial_update_changes_slots(self, client, salon):
        business_id, service_id = salon.business.id, salon.haircut.id
        await client.patch(
            f"/businesses/{business_id}/services/{service_id}", json={"duration_min": 60}
        )
        slots = await client.get(
            "/book/salon-luna/slots", params={"service_id": service_id, "date": "2030-01-07"}
        )
        assert slots.json()["slots"]["2030-01-07"][-1] == "16:00"

    @pytest.mark.asyncio
    async def test_partial_update_rejects_null(self, client, salon):
        response = await client.patch(
            f"/businesses/{salon.business.id}/services/{salon.haircut.id}", json={"duration_min": None}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_deactivated_service_is_hidden(self, client, salon):
        business_id, service_id = salon.business.id, salon.haircut.id
        await client.patch(f"/businesses/{business_id}/services/{service_id}", json={"active": False})

        public = await client.get("/book/salon-luna/services")
        assert [s["name"] for s in public.json()] == ["Color"]
        slots = await client.get(
            "/book/salon-luna/slots", params={"service_id": service_id, "date": "2030-01-07"}
        )
        assert slots.status_code == 404

    @pytest.mark.asyncio
    async def test_service_of_other_business(self, client, salon):
        other = (await client.post("/businesses", json={"name": "Other"})).json()
        response = await client.patch(
            f"/businesses/{other['id']}/services/{salon.haircut.id}", json={"price_cents": 1}
        )
        assert response.status_code == 404


class TestStaff:
    @pytest.mark.asyncio
    async def test_create_and_list(self, client, salon):
        business_id = salon.business.id
        response = await client.post(
            f"/businesses/{business_id}/staff", json={"display_name": "Carla", "role": "admin"}
        )
        assert response.status_code == 201
        assert response.json()["role"] == "admin"

        listed = await client.get(f"/businesses/{business_id}/staff")
        assert [s["display_name"] for s in listed.json()] == ["Ana", "Carla", "Luis"]

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, client, salon):
        business_id = salon.business.id
        response = await client.post(f"/businesses/{business_id}/staff", json={"display_name": "Ana"})
        assert response.status_code == 409


# ────────────────────────────────────────────────────────────────
# Availability
# ────────────────────────────────────────────────────────────────

class TestAvailability:
    @pytest.mark.asyncio
    async def test_get(self, client, salon):
        response = await client.get(f"/businesses/{salon.business.id}/availability")
        assert response.status_code == 200
        data = response.json()
        assert len(data["rules"]) == 5
        assert data["exceptions"] == []

    @pytest.mark.asyncio
    async def test_default_schedule_is_noop_when_rules_exist(self, client, salon):
        response = await client.post(f"/businesses/{salon.business.id}/setup-default-schedule")
        assert response.json() == {"created": False}

    @pytest.mark.asyncio
    async def test_default_schedule_for_new_business(self, client):
        business = (await client.post("/businesses", json={"name": "Fresh"})).json()
        response = await client.post(f"/businesses/{business['id']}/setup-default-schedule")
        assert response.json() == {"created": True}

        rules = (await client.get(f"/businesses/{business['id']}/availability")).json()["rules"]
        saturday = [r for r in rules if r["weekday"] == 6]
        assert saturday == [
            {
                "id": saturday[0]["id"],
                "staff_id": None,
                "weekday": 6,
                "start_time": "10:00",
                "end_time": "15:00",
                "is_active": True,
            }
        ]

    @pytest.mark.asyncio
    async def test_closed_exception_and_delete(self, client, salon):
        business_id, service_id = salon.business.id, salon.haircut.id
        created = await client.post(
            f"/businesses/{business_id}/availability",
            json={"type": "exception", "date": "2030-01-07", "is_closed": True, "reason": "Holiday"},
        )
        assert created.status_code == 201
        exception_id = created.json()["id"]

        params = {"service_id": service_id, "date": "2030-01-07"}
        slots = await client.get("/book/salon-luna/slots", params=params)
        assert slots.json()["slots"]["2030-01-07"] == []

        deleted = await client.delete(f"/businesses/{business_id}/availability/exceptions/{exception_id}")
        assert deleted.status_code == 204

        slots = await client.get("/book/salon-luna/slots", params=params)
        assert len(slots.json()["slots"]["2030-01-07"]) == 31

    @pytest.mark.asyncio
    async def test_open_exception_replaces_hours(self, client, salon):
        business_id, service_id = salon.business.id, salon.haircut.id
        await client.post(
            f"/businesses/{business_id}/availability",
            json={"type": "exception", "date": "2030-01-07", "start_time": "12:00", "end_time": "13:00"},
        )
        slots = await client.get(
            "/book/salon-luna/slots", params={"service_id": service_id, "date": "2030-01-07"}
        )
        assert slots.json()["slots"]["2030-01-07"] == ["12:00", "12:15", "12:30"]

    @pytest.mark.asyncio
    async def test_open_exception_needs_hours(self, client, salon):
        response = await client.post(
            f"/businesses/{salon.business.id}/availability",
            json={"type": "exception", "date": "2030-01-07", "is_closed": False},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_staff_rule(self, client, salon):
        business_id, service_id, ana_id = salon.business.id, salon.haircut.id, salon.ana.id
        response = await client.post(
            f"/businesses/{business_id}/availability",
            json={"type": "rule", "weekday": 1, "start_time": "13:00", "end_time": "18:00", "staff_id": ana_id},
        )
        assert response.status_code == 201

        slots = await client.get(
            "/book/salon-luna/slots",
            params={"service_id": service_id, "date": "2030-01-07", "staff_id": ana_id},
        )
        day = slots.json()["slots"]["2030-01-07"]
        assert day[0] == "13:00"
        assert day[-1] == "17:30"

    @pytest.mark.asyncio
    async def test_rule_end_before_start(self, client, salon):
        response = await client.post(
            f"/businesses/{salon.business.id}/availability",
            json={"type": "rule", "weekday": 1, "start_time": "18:00", "end_time": "09:00"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_rule_for_unknown_staff(self, client, salon):
        response = await client.post(
            f"/businesses/{salon.business.id}/availability",
            json={"type": "rule", "weekday": 1, "start_time": "09:00", "end_time": "12:00", "staff_id": 9999},
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_unknown_exception(self, client, salon):
        response = await client.delete(f"/businesses/{salon.business.id}/availability/exceptions/9999")
        assert response.status_code == 404


# ────────────────────────────────────────────────────────────────
# Appointments
# ────────────────────────────────────────────────────────────────

class TestAppointments:
    async def _book(self, client, service_id, start="2030-01-07T10:00"):
        response = await client.post(
            "/book/salon-luna/appointments",
            json={
                "service_id": service_id,
                "start": start,
                "customer_name": "Maria",
                "customer_phone": "+17875550100",
            },
        )
        assert response.status_code == 201
        return response.json()

    @pytest.mark.asyncio
    async def test_calendar_range(self, client, salon):
        business_id, service_id = salon.business.id, salon.haircut.id
        await self._book(client, service_id, "2030-01-07T10:00")
        await self._book(client, service_id, "2030-01-08T11:00")

        one_day = await client.get(f"/businesses/{business_id}/appointments", params={"start": "2030-01-07"})
        assert [a["local_start"] for a in one_day.json()] == ["10:00"]

        two_days = await client.get(
            f"/businesses/{business_id}/appointments", params={"start": "2030-01-07", "end": "2030-01-08"}
        )
        assert [a["local_date"] for a in two_days.json()] == ["2030-01-07", "2030-01-08"]

    @pytest.mark.asyncio
    async def test_calendar_range_end_before_start(self, client, salon):
        response = await client.get(
            f"/businesses/{salon.business.id}/appointments", params={"start": "2030-01-08", "end": "2030-01-07"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_status_lifecycle(self, client, salon):
        business_id = salon.business.id
        appointment = await self._book(client, salon.color.id)
        assert appointment["status"] == "pending"
        url = f"/businesses/{business_id}/appointments/{appointment['id']}/status"

        response = await client.post(url, json={"status": "confirmed"})
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

        response = await client.post(url, json={"status": "noshow"})
        assert response.json()["status"] == "noshow"

        response = await client.post(url, json={"status": "confirmed"})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_status_value(self, client, salon):
        appointment = await self._book(client, salon.haircut.id)
        response = await client.post(
            f"/businesses/{salon.business.id}/appointments/{appointment['id']}/status",
            json={"status": "rescheduled"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_business(self, client):
        response = await client.get("/businesses/9999/appointments", params={"start": "2030-01-07"})
        assert response.status_code == 404


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.json() == {"ok": True}
