import pytest

from shop.core.exceptions import (
    ShopError, ValidationError, NotFoundError, StateConflictError, CartEmptyError,
    CouponNotApplicableError, CouponNotFoundError, CouponLimitError, InsufficientStockError,
    InvalidTransitionError, GatewayError, InvalidSignatureError, PaymentAmountMismatchError,
    VariantNotFoundError,
)


@pytest.mark.parametrize("error, status, family", [
    (CartEmptyError(), 400, ValidationError),
    (CouponNotApplicableError("expired", "Coupon has expired", "SAVE10"), 400, ValidationError),
    (PaymentAmountMismatchError("mismatch", expected=1, received=2), 400, ValidationError),
    (CouponNotFoundError("NOPE"), 404, NotFoundError),
    (VariantNotFoundError(1, 2), 404, NotFoundError),
    (CouponLimitError("usage_limit_reached", "Coupon usage limit reached"), 409, StateConflictError),
    (InsufficientStockError("Serum", 1, 2, 5, 3), 409, StateConflictError),
    (InvalidTransitionError("pending", "delivered"), 409, StateConflictError),
    (InvalidSignatureError("momo"), 400, ShopError),
    (GatewayError("momo", code=1006), 502, ShopError),
])
def test_status_codes(error, status, family):
    assert isinstance(error, family)
    assert error.status_code == status


def test_details_drop_empty_values():
    error = CouponLimitError("user_limit_reached", "You have already used this coupon")
    assert error.details == {"reason": "user_limit_reached"}
    assert error.reason == "user_limit_reached"


def test_gateway_error_message():
    error = GatewayError("momo", code=1006, provider_message="Transaction denied")
    assert error.message == "momo error [1006]: Transaction denied"
    assert error.details == {"provider": "momo", "code": 1006, "provider_message": "Transaction denied"}

    bare = GatewayError("vnpay")
    assert bare.message == "vnpay error"
    assert bare.details == {"provider": "vnpay"}


def test_insufficient_stock_details():
    error = InsufficientStockError("Hydrating Serum", 1, 2, 5, 3)
    assert str(error) == "Not enough stock for Hydrating Serum"
    assert error.details == {"product_id": 1, "variant_id": 2, "requested": 5, "available": 3}
