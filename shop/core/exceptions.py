"""
Domain exceptions raised by the order, payment and coupon services.

Every exception carries the HTTP status the API layer answers with and an
optional ``details`` dict that is echoed back to the client.
"""
from typing import Any, Optional


class ShopError(Exception):
    status_code = 400

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = {k: v for k, v in details.items() if v is not None}


# -----------------------
# Validation (400)
# -----------------------
class ValidationError(ShopError):
    status_code = 400


class CartEmptyError(ValidationError):
    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class CouponNotApplicableError(ValidationError):
    def __init__(self, reason: str, message: str, code: Optional[str] = None):
        super().__init__(message, reason=reason, code=code)
        self.reason = reason


class PaymentAmountMismatchError(ValidationError):
    pass


# -----------------------
# Not found (404)
# -----------------------
class NotFoundError(ShopError):
    status_code = 404


class OrderNotFoundError(NotFoundError):
    def __init__(self, message: str = "Order not found"):
        super().__init__(message)


class PaymentNotFoundError(NotFoundError):
    def __init__(self, message: str = "Payment not found"):
        super().__init__(message)


class CouponNotFoundError(NotFoundError):
    def __init__(self, code: Optional[str] = None):
        super().__init__("Coupon not found", reason="not_found", code=code)
        self.reason = "not_found"


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", product_id=product_id)


class VariantNotFoundError(NotFoundError):
    def __init__(self, product_id: int, variant_id: int):
        super().__init__(
            f"Variant {variant_id} not found in product {product_id}",
            product_id=product_id,
            variant_id=variant_id,
        )


class RuleNotFoundError(NotFoundError):
    def __init__(self, message: str = "Auto coupon rule not found"):
        super().__init__(message)


# -----------------------
# State conflicts (409)
# -----------------------
class StateConflictError(ShopError):
    status_code = 409


class InvalidTransitionError(StateConflictError):
    def __init__(self, current: str, target: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot move order from '{current}' to '{target}'",
            current_status=current,
            target_status=target,
        )


class PaymentAlreadyCompletedError(StateConflictError):
    def __init__(self, message: str = "Payment already completed"):
        super().__init__(message)


class InvalidStateError(StateConflictError):
    pass


class CouponLimitError(StateConflictError):
    def __init__(self, reason: str, message: str, code: Optional[str] = None):
        super().__init__(message, reason=reason, code=code)
        self.reason = reason


class InsufficientStockError(StateConflictError):
    def __init__(self, product_name: str, product_id: int, variant_id: int, requested: int, available: int):
        super().__init__(
            f"Not enough stock for {product_name}",
            product_id=product_id,
            variant_id=variant_id,
            requested=requested,
            available=available,
        )


# -----------------------
# Gateway / signatures
# -----------------------
class SignatureError(ShopError):
    status_code = 400


class InvalidSignatureError(SignatureError):
    def __init__(self, provider: str):
        super().__init__(f"Invalid {provider} signature", provider=provider)
        self.provider = provider


class GatewayError(ShopError):
    status_code = 502

    def __init__(self, provider: str, code: Any = None, provider_message: Optional[str] = None):
        text = f"{provider} error"
        if code is not None:
            text += f" [{code}]"
        if provider_message:
            text += f": {provider_message}"
        super().__init__(text, provider=provider, code=code, provider_message=provider_message)
        self.provider = provider
        self.code = code
        self.provider_message = provider_message
