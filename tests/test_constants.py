"""
Unit tests for constants.

These verify that constants are set correctly.
Run: pytest tests/test_constants.py -v
"""
import pytest
from constants import (
    POST_TYPES, POST_TYPE_SLUGS, PAYABLE_POST_TYPES, POST_TYPE_GIVEAWAY, POST_TYPE_EMERGENCY,
    STATUS_TABS, TERMINAL_STATUSES, DEFAULT_COMMISSION_RATE, MIN_GCASH_AMOUNT,
    DELIVERY_BASE_FEE, DELIVERY_BASE_KM, DELIVERY_FEE_PER_KM,
    MAX_UPLOAD_SIZE, ALLOWED_EXTENSIONS, MIN_PRICE, MAX_PRICE,
)


@pytest.mark.unit
class TestConstants:
    """Test that constants are set correctly"""

    def test_six_post_types_with_slugs(self):
        assert len(POST_TYPES) == 6
        assert set(POST_TYPE_SLUGS.values()) == set(POST_TYPES)
        assert POST_TYPE_SLUGS['emergency'] == 'Emergency Lending'

    def test_free_types_are_not_payable(self):
        assert POST_TYPE_GIVEAWAY not in PAYABLE_POST_TYPES
        assert POST_TYPE_EMERGENCY not in PAYABLE_POST_TYPES
        assert PAYABLE_POST_TYPES < set(POST_TYPES)

    def test_every_status_has_a_tab(self):
        assert TERMINAL_STATUSES == {'Completed', 'Cancelled'}
        assert set(STATUS_TABS.values()) == {'active', 'completed', 'cancelled'}

    def test_commission_rate(self):
        """Platform keeps 5% of each online payment"""
        assert 0 < DEFAULT_COMMISSION_RATE < 1
        assert DEFAULT_COMMISSION_RATE == 0.05

    def test_delivery_fee_curve(self):
        assert DELIVERY_BASE_FEE == 50
        assert DELIVERY_BASE_KM == 5
        assert DELIVERY_FEE_PER_KM == 10

    def test_gcash_minimum(self):
        # PayMongo rejects GCash sources under 20 pesos
        assert MIN_GCASH_AMOUNT == 20.00

    def test_upload_limits(self):
        assert MAX_UPLOAD_SIZE == 10 * 1024 * 1024  # 10MB
        assert {'jpg', 'jpeg', 'png', 'webp'} == ALLOWED_EXTENSIONS

    def test_price_range(self):
        assert MIN_PRICE == 0
        assert MIN_PRICE < MAX_PRICE
