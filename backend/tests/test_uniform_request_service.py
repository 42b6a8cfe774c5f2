"""
Uniform request creation tests.

Verifies:
- Allowance is cumulative over non-cancelled requests and never mutated
- Cooldown is measured from the latest request's created_at
- Stock is decremented conditionally and never goes negative
- Rejections leave stock, requests and deliveries untouched
- Tracking id collisions are retried with a fresh id
"""

from datetime import timedelta

import pytest

from d1store.extensions import db
from d1store.models import Delivery, StockItem, UniformRequest
from d1store.services import uniform_request_service
from d1store.services.uniform_request_service import (
    CooldownError,
    StaffNotFoundError,
    StockError,
    TrackingIdExhaustedError,
    UniformLimitError,
    create_uniform_request,
    get_request_eligibility,
)
from d1store.validation import ValidationError


def _qty(item_id):
    db.session.expire_all()
    return db.session.get(StockItem, item_id).qty


# =============================================================================
# HAPPY PATH
# =============================================================================


class TestCreateRequest:

    def test_creates_request_and_decrements_stock(self, db_session, make_staff, make_stock, t0):
        staff = make_staff()
        item = make_stock(qty=10)

        result = create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=3, now=t0)

        assert result.remaining_stock == 7
        assert result.requested_quantity == 3
        assert result.is_low_stock is False
        assert result.request.status == "REQUEST"
        assert result.request.created_at == t0
        assert result.request.item_name == "Polo Shirt M"
        assert _qty(item.id) == 7

    def test_tracking_id_format(self, db_session, make_staff, make_stock, t0):
        staff = make_staff()
        item = make_stock()
        result = create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=1, now=t0)

        prefix, day, staff_part, suffix = result.request.tracking_id.split("-")
        assert prefix == "D1"
        assert day == "20260302"
        assert staff_part == f"S{staff.id}"
        assert len(suffix) == 4

    def test_delivery_record_is_created(self, db_session, make_staff, make_stock, t0):
        staff = make_staff()
        item = make_stock()
        result = create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=1, now=t0)

        delivery = db_session.query(Delivery).one()
        assert delivery.tracking_id == result.request.tracking_id
        assert delivery.store_id == staff.store_id

    def test_low_stock_flag(self, app, db_session, make_staff, make_stock, t0):
        staff = make_staff()
        item = make_stock(qty=app.config["LOW_STOCK_THRESHOLD"] + 1)
        result = create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=1, now=t0)
        assert result.is_low_stock is True

    def test_to_dict_carries_stock_fields(self, db_session, make_staff, make_stock, t0):
        staff = make_staff()
        item = make_stock(qty=10)
        payload = create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=2, now=t0).to_dict()

        assert payload["requestedQuantity"] == 2
        assert payload["remainingStock"] == 8
        assert payload["staff"]["display_name"] == "Alex Smith"

    @pytest.mark.parametrize("quantity", [0, -1, "1.5", "abc", None, True])
    def test_invalid_quantity(self, db_session, make_staff, make_stock, quantity):
        staff = make_staff()
        item = make_stock()
        with pytest.raises(ValidationError):
            create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=quantity)

    def test_missing_item_fields(self, db_session, make_staff):
        staff = make_staff()
        with pytest.raises(ValidationError, match="ean is required"):
            create_uniform_request(staff.id, ean="  ", name="Polo", quantity=1)


# =============================================================================
# REJECTIONS
# =============================================================================


class TestRejections:

    def test_unknown_staff(self, db_session, make_stock, t0):
        item = make_stock()
        with pytest.raises(StaffNotFoundError) as excinfo:
            create_uniform_request(9999, ean=item.ean, name=item.name, quantity=1, now=t0)
        assert excinfo.value.to_dict()["kind"] == "staff_not_found"
        assert _qty(item.id) == 10

    def test_allowance_is_cumulative(self, db_session, make_staff, make_stock, t0):
        staff = make_staff(uniform_limit=2)
        item = make_stock(qty=10)
        create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=1, now=t0)

        later = t0 + timedelta(hours=25)
        with pytest.raises(UniformLimitError) as excinfo:
            create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=2, now=later)

        details = excinfo.value.to_dict()
        assert details["kind"] == "uniform_limit_error"
        assert details["uniformLimit"] == 2
        assert details["totalOrdered"] == 1
        assert details["remaining"] == 1
        assert _qty(item.id) == 9

        # The remaining unit can still be requested, and the limit is unchanged
        create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=1, now=later)
        db_session.expire_all()
        assert staff.uniform_limit == 2

    def test_limit_two_scenario(self, db_session, make_staff, make_stock, t0):
        staff = make_staff(uniform_limit=2)
        item = make_stock(qty=10)

        with pytest.raises(UniformLimitError) as excinfo:
            create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=3, now=t0)
        assert excinfo.value.details["uniformLimit"] == 2
        assert excinfo.value.details["totalOrdered"] == 0

        create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=2, now=t0)

        with pytest.raises(UniformLimitError):
            create_uniform_request(
                staff.id, ean=item.ean, name=item.name, quantity=1, now=t0 + timedelta(days=2)
            )
        assert _qty(item.id) == 8

    def test_cancelled_requests_do_not_count(self, db_session, make_staff, make_stock, t0):
        staff = make_staff(uniform_limit=2)
        item = make_stock()
        first = create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=2, now=t0)
        first.request.status = "CANCELLED"
        db_session.commit()

        result = create_uniform_request(
            staff.id, ean=item.ean, name=item.name, quantity=2, now=t0 + timedelta(days=2)
        )
        assert result.request.quantity == 2

    def test_cooldown_boundary(self, app, db_session, make_staff, make_stock, t0):
        staff = make_staff()
        item = make_stock()
        create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=1, now=t0)
        window = timedelta(hours=app.config["UNIFORM_REQUEST_COOLDOWN_HOURS"])

        with pytest.raises(CooldownError) as excinfo:
            create_uniform_request(
                staff.id, ean=item.ean, name=item.name, quantity=1, now=t0 + window - timedelta(seconds=1)
            )
        details = excinfo.value.to_dict()
        assert details["kind"] == "cooldown"
        assert details["lastRequestedAt"] == "2026-03-02T09:00:00Z"
        assert details["nextAllowedAt"] == "2026-03-03T09:00:00Z"
        assert excinfo.value.status_code == 429

        # Exactly at the boundary the request is allowed
        create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=1, now=t0 + window)
        assert db_session.query(UniformRequest).count() == 2

    def test_cooldown_counts_cancelled_requests(self, db_session, make_staff, make_stock, t0):
        staff = make_staff()
        item = make_stock()
        first = create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=1, now=t0)
        first.request.status = "CANCELLED"
        db_session.commit()

        with pytest.raises(CooldownError):
            create_uniform_request(
                staff.id, ean=item.ean, name=item.name, quantity=1, now=t0 + timedelta(hours=1)
            )

    def test_insufficient_stock(self, db_session, make_staff, make_stock, t0):
        staff = make_staff()
        item = make_stock(qty=2)

        with pytest.raises(StockError) as excinfo:
            create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=3, now=t0)

        details = excinfo.value.to_dict()
        assert details["available"] == 2
        assert details["requested"] == 3
        assert _qty(item.id) == 2
        assert db_session.query(UniformRequest).count() == 0
        assert db_session.query(Delivery).count() == 0

    def test_unknown_item_is_a_stock_error(self, db_session, make_staff, t0):
        staff = make_staff()
        with pytest.raises(StockError) as excinfo:
            create_uniform_request(staff.id, ean="0", name="Nothing", quantity=1, now=t0)
        assert excinfo.value.to_dict()["available"] == 0

    def test_limit_is_checked_before_stock(self, db_session, make_staff, make_stock, t0):
        staff = make_staff(uniform_limit=1)
        item = make_stock(qty=0)
        with pytest.raises(UniformLimitError):
            create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=2, now=t0)

    def test_stock_drains_to_zero_and_stops(self, db_session, make_staff, make_stock, t0):
        item = make_stock(qty=3)
        for i in range(3):
            staff = make_staff(f"Staff {i}")
            create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=1, now=t0)
        late = make_staff("Late")

        with pytest.raises(StockError):
            create_uniform_request(late.id, ean=item.ean, name=item.name, quantity=1, now=t0)
        assert _qty(item.id) == 0


# =============================================================================
# TRACKING ID COLLISIONS
# =============================================================================


class TestTrackingIdRetry:

    def test_collision_is_retried(self, db_session, make_staff, make_stock, monkeypatch, t0):
        item = make_stock(qty=10)
        first_staff = make_staff("First")
        second_staff = make_staff("Second")
        ids = iter(["D1-TAKEN", "D1-TAKEN", "D1-FRESH"])
        monkeypatch.setattr(uniform_request_service, "generate_tracking_id", lambda *a, **k: next(ids))

        create_uniform_request(first_staff.id, ean=item.ean, name=item.name, quantity=1, now=t0)
        result = create_uniform_request(second_staff.id, ean=item.ean, name=item.name, quantity=1, now=t0)

        assert result.request.tracking_id == "D1-FRESH"
        # The collided attempt's decrement was rolled back
        assert _qty(item.id) == 8

    def test_exhausted_retries(self, app, db_session, make_staff, make_stock, monkeypatch, t0):
        item = make_stock(qty=10)
        first_staff = make_staff("First")
        second_staff = make_staff("Second")
        monkeypatch.setattr(uniform_request_service, "generate_tracking_id", lambda *a, **k: "D1-TAKEN")
        create_uniform_request(first_staff.id, ean=item.ean, name=item.name, quantity=1, now=t0)

        with pytest.raises(TrackingIdExhaustedError) as excinfo:
            create_uniform_request(second_staff.id, ean=item.ean, name=item.name, quantity=1, now=t0)

        assert excinfo.value.message == "Unable to generate unique tracking number"
        assert excinfo.value.details["attempts"] == app.config["TRACKING_ID_MAX_ATTEMPTS"]
        assert _qty(item.id) == 9
        assert db_session.query(UniformRequest).count() == 1


# =============================================================================
# ELIGIBILITY
# =============================================================================


class TestEligibility:

    def test_new_staff_can_request(self, db_session, make_staff):
        staff = make_staff(uniform_limit=3)
        view = get_request_eligibility(staff.id)
        assert view["canRequest"] is True
        assert view["remaining"] == 3
        assert view["lastRequestedAt"] is None

    def test_reflects_cooldown_and_usage(self, db_session, make_staff, make_stock, t0):
        staff = make_staff(uniform_limit=3)
        item = make_stock()
        create_uniform_request(staff.id, ean=item.ean, name=item.name, quantity=2, now=t0)

        view = get_request_eligibility(staff.id, now=t0 + timedelta(hours=1))
        assert view["canRequest"] is False
        assert view["totalOrdered"] == 2
        assert view["totalRequests"] == 1
        assert view["remaining"] == 1
        assert view["nextAllowedAt"] == "2026-03-03T09:00:00Z"

    def test_unlimited_staff_has_no_remaining(self, db_session, make_staff):
        staff = make_staff()
        assert get_request_eligibility(staff.id)["remaining"] is None

    def test_unknown_staff(self, db_session):
        with pytest.raises(StaffNotFoundError):
            get_request_eligibility(12345)
