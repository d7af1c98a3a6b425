"""
Recurring appointment tests: occurrence dates, series generation through
the booking flow, deactivation and the owner routes.

Series tests use an engine whose clock reads 2030-01-01, so the default
30 day horizon covers the Mondays of January 2030 (7, 14, 21 and 28).

Run with: pytest tests/test_recurring.py -v
"""

from datetime import date, datetime, time, timezone

import pytest
from sqlalchemy import select

from bookit.booking import create_appointment
from bookit.models import Appointment, AppointmentStatus, RecurrenceFrequency, ServiceStaff
from bookit.recurring import (
    SERIES_CANCELED_NOTE,
    add_months,
    create_series,
    deactivate_series,
    generate_occurrences,
    list_series,
    occurrence_dates,
)
from bookit.scheduling.engine import AvailabilityEngine
from bookit.scheduling.errors import InvalidInput, NotFound
from bookit.scheduling.repository import SqlAvailabilityStore

NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
JANUARY_MONDAYS = [date(2030, 1, d) for d in (7, 14, 21, 28)]
TZ = "America/Puerto_Rico"


@pytest.fixture
def engine(async_session) -> AvailabilityEngine:
    return AvailabilityEngine(SqlAvailabilityStore(async_session), clock=lambda: NOW)


async def weekly_haircut(session, salon, engine, **overrides):
    params = dict(
        service_id=salon.haircut.id,
        frequency=RecurrenceFrequency.WEEKLY,
        start_date=date(2030, 1, 7),
        time_of_day=time(10, 0),
        customer_name="Maria",
        customer_phone="+17875550100",
        engine=engine,
    )
    params.update(overrides)
    return await create_series(session, salon.business.id, TZ, **params)


async def occurrences(session, recurring_id):
    result = await session.execute(
        select(Appointment)
        .where(Appointment.recurring_id == recurring_id)
        .order_by(Appointment.starts_at)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


def local_dates(appointments):
    # Puerto Rico is UTC-4, 10:00 local is 14:00Z on the same date
    return [a.starts_at.date() for a in appointments]


# ────────────────────────────────────────────────────────────────
# Occurrence dates
# ────────────────────────────────────────────────────────────────

class TestOccurrenceDates:
    @pytest.mark.parametrize(
        "start, months, expected",
        [
            (date(2030, 1, 31), 1, date(2030, 2, 28)),
            (date(2028, 1, 31), 1, date(2028, 2, 29)),
            (date(2030, 11, 15), 3, date(2031, 2, 15)),
            (date(2030, 3, 31), 0, date(2030, 3, 31)),
        ],
    )
    def test_add_months(self, start, months, expected):
        assert add_months(start, months) == expected

    def test_weekly(self):
        dates = occurrence_dates(date(2030, 1, 7), RecurrenceFrequency.WEEKLY, date(2030, 1, 1), date(2030, 2, 1))
        assert list(dates) == JANUARY_MONDAYS

    def test_biweekly_starts_on_the_series_grid(self):
        dates = occurrence_dates(
            date(2030, 1, 7), RecurrenceFrequency.BIWEEKLY, date(2030, 1, 15), date(2030, 2, 28)
        )
        assert list(dates) == [date(2030, 1, 21), date(2030, 2, 4), date(2030, 2, 18)]

    def test_monthly_returns_to_the_31st(self):
        dates = occurrence_dates(
            date(2030, 1, 31), RecurrenceFrequency.MONTHLY, date(2030, 1, 1), date(2030, 5, 31)
        )
        assert list(dates) == [
            date(2030, 1, 31),
            date(2030, 2, 28),
            date(2030, 3, 31),
            date(2030, 4, 30),
            date(2030, 5, 31),
        ]

    def test_empty_window(self):
        dates = occurrence_dates(date(2030, 1, 7), RecurrenceFrequency.WEEKLY, date(2030, 2, 1), date(2030, 1, 1))
        assert list(dates) == []


# ────────────────────────────────────────────────────────────────
# Series
# ────────────────────────────────────────────────────────────────

class TestCreateSeries:
    @pytest.mark.asyncio
    async def test_books_every_date_in_the_horizon(self, async_session, salon, engine):
        result = await weekly_haircut(async_session, salon, engine)

        assert result.series.is_active is True
        assert result.skipped == []
        assert local_dates(result.created) == JANUARY_MONDAYS
        for appt in result.created:
            assert appt.recurring_id == result.series.id
            assert appt.source == "recurring"
            assert appt.status == AppointmentStatus.CONFIRMED
            assert appt.starts_at.time() == time(14, 0)

    @pytest.mark.asyncio
    async def test_taken_dates_are_skipped(self, async_session, salon, engine):
        ana_id = salon.ana.id
        await create_appointment(
            async_session,
            business_id=salon.business.id,
            service_id=salon.haircut.id,
            staff_id=ana_id,
            local_start=datetime(2030, 1, 14, 10, 0),
            customer_name="Rosa",
            customer_phone="+17875550111",
            engine=engine,
        )

        result = await weekly_haircut(async_session, salon, engine, staff_id=ana_id)
        assert result.skipped == [date(2030, 1, 14)]
        assert local_dates(result.created) == [date(2030, 1, 7), date(2030, 1, 21), date(2030, 1, 28)]
        assert {a.staff_id for a in result.created} == {ana_id}

    @pytest.mark.asyncio
    async def test_end_date_limits_the_series(self, async_session, salon, engine):
        result = await weekly_haircut(async_session, salon, engine, end_date=date(2030, 1, 14))
        assert local_dates(result.created) == JANUARY_MONDAYS[:2]

    @pytest.mark.asyncio
    async def test_end_before_start(self, async_session, salon, engine):
        with pytest.raises(InvalidInput):
            await weekly_haircut(async_session, salon, engine, end_date=date(2030, 1, 1))

    @pytest.mark.asyncio
    async def test_unknown_service(self, async_session, salon, engine):
        with pytest.raises(NotFound):
            await weekly_haircut(async_session, salon, engine, service_id=9999)

    @pytest.mark.asyncio
    async def test_unqualified_staff(self, async_session, salon, engine):
        async_session.add(ServiceStaff(service_id=salon.haircut.id, staff_id=salon.luis.id))
        await async_session.commit()
        with pytest.raises(InvalidInput):
            await weekly_haircut(async_session, salon, engine, staff_id=salon.ana.id)


class TestGenerateOccurrences:
    @pytest.mark.asyncio
    async def test_generating_again_books_nothing_new(self, async_session, salon, engine):
        business_id = salon.business.id
        series_id = (await weekly_haircut(async_session, salon, engine)).series.id

        again = await generate_occurrences(async_session, business_id, series_id, TZ, engine=engine)
        assert again.created == []
        assert again.skipped == []
        assert len(await occurrences(async_session, series_id)) == 4

    @pytest.mark.asyncio
    async def test_owner_cancellation_sticks(self, async_session, salon, engine):
        business_id = salon.business.id
        first = await weekly_haircut(async_session, salon, engine)
        series_id = first.series.id
        first.created[1].status = AppointmentStatus.CANCELED
        await async_session.commit()

        again = await generate_occurrences(async_session, business_id, series_id, TZ, engine=engine)
        assert again.created == []

    @pytest.mark.asyncio
    async def test_extends_through_a_later_date(self, async_session, salon, engine):
        business_id = salon.business.id
        series_id = (await weekly_haircut(async_session, salon, engine)).series.id

        more = await generate_occurrences(
            async_session, business_id, series_id, TZ, through=date(2030, 2, 28), engine=engine
        )
        assert local_dates(more.created) == [date(2030, 2, d) for d in (4, 11, 18, 25)]

    @pytest.mark.asyncio
    async def test_through_beyond_the_query_range(self, async_session, salon, engine):
        business_id = salon.business.id
        series_id = (await weekly_haircut(async_session, salon, engine)).series.id
        with pytest.raises(InvalidInput):
            await generate_occurrences(
                async_session, business_id, series_id, TZ, through=date(2030, 6, 1), engine=engine
            )

    @pytest.mark.asyncio
    async def test_inactive_series(self, async_session, salon, engine):
        business_id = salon.business.id
        series_id = (await weekly_haircut(async_session, salon, engine)).series.id
        await deactivate_series(async_session, business_id, series_id, cancel_future=False)
        with pytest.raises(InvalidInput):
            await generate_occurrences(async_session, business_id, series_id, TZ, engine=engine)

    @pytest.mark.asyncio
    async def test_series_of_other_business(self, async_session, salon, engine):
        series_id = (await weekly_haircut(async_session, salon, engine)).series.id
        with pytest.raises(NotFound):
            await generate_occurrences(async_session, 9999, series_id, TZ, engine=engine)


class TestDeactivateSeries:
    @pytest.mark.asyncio
    async def test_cancels_only_future_occurrences(self, async_session, salon, engine):
        business_id = salon.business.id
        series_id = (await weekly_haircut(async_session, salon, engine)).series.id

        series = await deactivate_series(
            async_session, business_id, series_id, now=datetime(2030, 1, 15, tzinfo=timezone.utc)
        )
        assert series.is_active is False

        rows = await occurrences(async_session, series_id)
        assert [a.status for a in rows] == [
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CANCELED,
            AppointmentStatus.CANCELED,
        ]
        assert rows[0].notes is None
        assert rows[2].notes == SERIES_CANCELED_NOTE

    @pytest.mark.asyncio
    async def test_keep_future_occurrences(self, async_session, salon, engine):
        business_id = salon.business.id
        series_id = (await weekly_haircut(async_session, salon, engine)).series.id

        await deactivate_series(async_session, business_id, series_id, cancel_future=False)
        rows = await occurrences(async_session, series_id)
        assert {a.status for a in rows} == {AppointmentStatus.CONFIRMED}

    @pytest.mark.asyncio
    async def test_list_with_counts(self, async_session, salon, engine):
        business_id = salon.business.id
        first_id = (await weekly_haircut(async_session, salon, engine)).series.id
        second_id = (await weekly_haircut(async_session, salon, engine, time_of_day=time(15, 0),
                                          end_date=date(2030, 1, 7))).series.id
        await deactivate_series(async_session, business_id, second_id, cancel_future=False)

        rows = await list_series(async_session, business_id)
        assert [(s.id, total) for s, total in rows] == [(second_id, 1), (first_id, 4)]
        active = await list_series(async_session, business_id, active=True)
        assert [s.id for s, _ in active] == [first_id]


# ────────────────────────────────────────────────────────────────
# Owner routes
# ────────────────────────────────────────────────────────────────

class TestRecurringRoutes:
    @pytest.mark.asyncio
    async def test_create(self, client, salon):
        business_id = salon.business.id
        response = await client.post(
            f"/businesses/{business_id}/recurring-appointments",
            json={
                "service_id": salon.haircut.id,
                "frequency": "bi-weekly",
                "start_date": "2030-01-07",
                "time_of_day": "10:00",
                "customer_name": "  Maria ",
                "customer_phone": "+17875550100",
            },
        )
        assert response.status_code == 201
        data = response.json()
        assert data["recurring"]["frequency"] == "bi-weekly"
        assert data["recurring"]["time_of_day"] == "10:00"
        assert data["recurring"]["customer_name"] == "Maria"
        assert data["recurring"]["is_active"] is True
        # 2030 is past the horizon of the real clock
        assert data["created"] == []

    @pytest.mark.asyncio
    async def test_create_end_before_start(self, client, salon):
        response = await client.post(
            f"/businesses/{salon.business.id}/recurring-appointments",
            json={
                "service_id": salon.haircut.id,
                "frequency": "weekly",
                "start_date": "2030-01-07",
                "end_date": "2030-01-01",
                "time_of_day": "10:00",
                "customer_name": "Maria",
                "customer_phone": "+17875550100",
            },
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_unknown_frequency(self, client, salon):
        response = await client.post(
            f"/businesses/{salon.business.id}/recurring-appointments",
            json={
                "service_id": salon.haircut.id,
                "frequency": "daily",
                "start_date": "2030-01-07",
                "time_of_day": "10:00",
                "customer_name": "Maria",
                "customer_phone": "+17875550100",
            },
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_list_and_deactivate(self, client, async_session, salon, engine):
        business_id = salon.business.id
        series_id = (await weekly_haircut(async_session, salon, engine)).series.id

        listed = await client.get(f"/businesses/{business_id}/recurring-appointments")
        assert listed.status_code == 200
        assert [(s["id"], s["occurrence_count"]) for s in listed.json()] == [(series_id, 4)]

        response = await client.delete(f"/businesses/{business_id}/recurring-appointments/{series_id}")
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        # January 2030 is still ahead of the real clock
        rows = await occurrences(async_session, series_id)
        assert {a.status for a in rows} == {AppointmentStatus.CANCELED}

        inactive = await client.get(
            f"/businesses/{business_id}/recurring-appointments", params={"active": "false"}
        )
        assert [s["id"] for s in inactive.json()] == [series_id]

    @pytest.mark.asyncio
    async def test_generate_inactive_series(self, client, async_session, salon, engine):
        business_id = salon.business.id
        series_id = (await weekly_haircut(async_session, salon, engine)).series.id
        await client.delete(
            f"/businesses/{business_id}/recurring-appointments/{series_id}",
            params={"cancel_future": "false"},
        )

        response = await client.post(f"/businesses/{business_id}/recurring-appointments/{series_id}/generate")
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_generate_malformed_through(self, client, async_session, salon, engine):
        business_id = salon.business.id
        series_id = (await weekly_haircut(async_session, salon, engine)).series.id
        response = await client.post(
            f"/businesses/{business_id}/recurring-appointments/{series_id}/generate",
            params={"through": "01/31/2030"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_series(self, client, salon):
        response = await client.delete(f"/businesses/{salon.business.id}/recurring-appointments/9999")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"
