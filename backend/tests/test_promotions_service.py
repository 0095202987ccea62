# Overview: Pytest coverage for promo validation, discount math and promo admin.

from datetime import timedelta

import pytest

from storefront.models import PromoCode
from storefront.services import promotions_service
from storefront.time_utils import utcnow
from storefront.validation import ConflictError, NotFoundError, ValidationError


def _promo(**fields):
    defaults = {
        "code": "X",
        "discount_type": PromoCode.TYPE_PERCENTAGE,
        "discount_value": 1000,
        "max_discount_cents": None,
    }
    defaults.update(fields)
    return PromoCode(**defaults)


class TestCalculateDiscount:
    def test_percentage_in_basis_points(self):
        assert promotions_service.calculate_discount(_promo(discount_value=1000), 5000) == 500

    def test_percentage_capped_by_max_discount(self):
        # 20% of 50.00 is 10.00, capped at 5.00
        promo = _promo(discount_value=2000, max_discount_cents=500)
        assert promotions_service.calculate_discount(promo, 5000) == 500

    def test_fixed_capped_by_order_total(self):
        promo = _promo(discount_type=PromoCode.TYPE_FIXED, discount_value=1500)
        assert promotions_service.calculate_discount(promo, 1000) == 1000

    def test_rounds_half_up_to_cent(self):
        # 12.5% of 0.99 = 0.12375 -> 0.12; 15% of 0.99 = 0.1485 -> 0.15
        assert promotions_service.calculate_discount(_promo(discount_value=1250), 99) == 12
        assert promotions_service.calculate_discount(_promo(discount_value=1500), 99) == 15
        # 10% of 0.05 = 0.005 -> 0.01
        assert promotions_service.calculate_discount(_promo(discount_value=1000), 5) == 1

    def test_never_exceeds_total(self):
        promo = _promo(discount_value=10000)
        assert promotions_service.calculate_discount(promo, 1234) == 1234


class TestValidatePromo:
    def test_unknown_code(self, db_session):
        with pytest.raises(NotFoundError, match="Invalid promo code"):
            promotions_service.validate_promo("NOPE", 1000)

    def test_lookup_is_case_insensitive(self, make_promo):
        make_promo(code="save10")
        result = promotions_service.validate_promo("Save10", 1000)
        assert result.valid is True
        assert result.promo.code == "SAVE10"

    def test_all_violations_are_reported(self, make_promo):
        now = utcnow()
        make_promo(
            code="LATE",
            valid_from=now - timedelta(days=10),
            valid_until=now - timedelta(days=1),
            min_order_amount_cents=5000,
            usage_limit=1,
            applicable_categories=["shoes"],
        )
        promo = promotions_service.get_promo_by_code("LATE")
        promo.used_count = 1
        promo.is_active = False

        result = promotions_service.validate_promo("LATE", 1000, "shirts")

        assert result.valid is False
        assert result.errors == [
            "This promo code is no longer active",
            "This promo code has expired",
            "This promo code has reached its usage limit",
            "Minimum order amount is 50.00",
            "This promo code is not valid for these items",
        ]

    def test_not_yet_valid(self, make_promo):
        now = utcnow()
        make_promo(code="SOON", valid_from=now + timedelta(days=1), valid_until=now + timedelta(days=2))
        result = promotions_service.validate_promo("SOON", 1000)
        assert result.errors == ["This promo code is not yet valid"]


class TestApplyPromo:
    def test_apply_returns_discount_without_counting(self, make_promo, db_session):
        make_promo(code="ONCE", usage_limit=1)

        result = promotions_service.apply_promo("ONCE", 5000)

        assert result == {"code": "ONCE", "discount_cents": 500, "new_total_cents": 4500}
        promo = promotions_service.get_promo_by_code("ONCE")
        db_session.refresh(promo)
        assert promo.used_count == 0

    def test_apply_rejects_exhausted_code(self, make_promo, db_session):
        promo = make_promo(code="DONE", usage_limit=1)
        promotions_service.increment_usage(promo.id)
        db_session.commit()

        with pytest.raises(ValidationError, match="usage limit"):
            promotions_service.apply_promo("DONE", 5000)


class TestIncrementUsage:
    def test_increment_usage_is_conditional(self, make_promo, db_session):
        promo = make_promo(code="TWO", usage_limit=2)
        promo_id = promo.id

        assert promotions_service.increment_usage(promo_id) is True
        assert promotions_service.increment_usage(promo_id) is True
        assert promotions_service.increment_usage(promo_id) is False
        db_session.commit()


class TestPromoAdmin:
    def test_duplicate_code_conflicts(self, make_promo):
        make_promo(code="DUP")
        with pytest.raises(ConflictError):
            make_promo(code="dup")

    def test_create_requires_value_and_expiry(self, db_session):
        with pytest.raises(ValidationError) as exc:
            promotions_service.create_promo({"code": "NEW"})
        assert "discount_value is required" in exc.value.errors
        assert "valid_until is required" in exc.value.errors

    def test_percentage_over_100_rejected(self, make_promo):
        with pytest.raises(ValidationError, match="cannot exceed 100%"):
            make_promo(code="HUGE", discount_value=10001)

    def test_update_rejects_inconsistent_dates(self, make_promo):
        promo = make_promo(code="EDIT")
        with pytest.raises(ValidationError):
            promotions_service.update_promo(promo.id, {"valid_until": "2000-01-01T00:00:00Z"})

    def test_update_parses_iso_dates(self, make_promo):
        promo = make_promo(code="EDIT")
        updated = promotions_service.update_promo(promo.id, {
            "valid_until": "2099-01-01T00:00:00Z",
            "max_discount_cents": 700,
        })
        assert updated.valid_until.year == 2099
        assert updated.max_discount_cents == 700

    def test_toggle_and_active_listing(self, make_promo):
        promo = make_promo(code="LIVE")
        assert [p["code"] for p in promotions_service.list_active_promos()] == ["LIVE"]

        promotions_service.toggle_promo(promo.id)

        assert promotions_service.list_active_promos() == []

    def test_delete(self, make_promo):
        promo_id = make_promo(code="GONE").id
        promotions_service.delete_promo(promo_id)
        with pytest.raises(NotFoundError):
            promotions_service.get_promo(promo_id)
