"""Builders for test data and recording fakes for the services' collaborators."""
import itertools
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from shop.models import (
    User, Product, ProductVariant, Cart, CartItem, Coupon, UserCouponUsage, DiscountType,
    Order, AutoCouponRule, TriggerType,
)
from shop.schemas.order_schemas import OrderCreate
from shop.services.notification_service import Notifier
from shop.services.order_services.order_service import create_order
from shop.services.payment_services.momo_gateway import MomoGateway
from shop.services.payment_services.vnpay_gateway import VnpayGateway
from shop.utils.time_utils import utcnow

_seq = itertools.count(1)

ADDRESS = {
    "full_name": "Nguyen Van A",
    "phone": "0901234567",
    "address": "12 Le Loi",
    "district": "District 1",
    "city": "Ho Chi Minh City",
}


async def make_user(db, username=None, role="user") -> User:
    n = next(_seq)
    user = User(username=username or f"user{n}", email=f"user{n}@example.com", role=role)
    db.add(user)
    await db.commit()
    return user


async def make_variant(db, price="250000", stock=10, category_id=None, brand_id=None, original_price=None):
    n = next(_seq)
    product = Product(
        name=f"Product {n}",
        slug=f"product-{n}",
        image_url=f"https://cdn.example.com/p{n}.jpg",
        category_id=category_id,
        brand_id=brand_id,
    )
    variant = ProductVariant(
        sku=f"SKU-{n}",
        label="50ml",
        price=Decimal(price),
        original_price=Decimal(original_price) if original_price else None,
        stock_quantity=stock,
    )
    product.variants = [variant]
    db.add(product)
    await db.commit()
    return product, variant


async def add_to_cart(db, user, product, variant, quantity=1) -> Cart:
    result = await db.execute(select(Cart).where(Cart.user_id == user.id))
    cart = result.scalars().first()
    if not cart:
        cart = Cart(user_id=user.id, items=[])
        db.add(cart)
    cart.items.append(CartItem(product_id=product.id, variant_id=variant.id, quantity=quantity))
    await db.commit()
    return cart


async def make_coupon(db, code="SAVE10", **overrides) -> Coupon:
    now = utcnow()
    fields = {
        "code": code,
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("10"),
        "max_discount_amount": Decimal("40000"),
        "usage_count": 0,
        "start_date": now - timedelta(days=1),
        "end_date": now + timedelta(days=30),
        "is_active": True,
    }
    fields.update(overrides)
    coupon = Coupon(**fields)
    db.add(coupon)
    await db.commit()
    return coupon


async def make_rule(db, trigger_type=TriggerType.ORDER_COUNT, **overrides) -> AutoCouponRule:
    fields = {
        "name": f"Rule {next(_seq)}",
        "trigger_type": trigger_type,
        "code_prefix": "LOYAL",
        "discount_type": DiscountType.FIXED_AMOUNT,
        "discount_value": Decimal("50000"),
        "usage_limit_per_user": 1,
        "valid_days": 30,
        "redemption_count": 0,
        "is_active": True,
    }
    if trigger_type == TriggerType.ORDER_COUNT:
        fields["required_order_count"] = 3
    elif trigger_type == TriggerType.TOTAL_SPENT:
        fields["required_total_spent"] = Decimal("1000000")
    fields.update(overrides)
    rule = AutoCouponRule(**fields)
    db.add(rule)
    await db.commit()
    return rule


def order_payload(payment_method="cod", coupon_code=None, shipping_fee=None, note=None) -> OrderCreate:
    return OrderCreate(
        payment_method=payment_method,
        shipping_address=ADDRESS,
        coupon_code=coupon_code,
        shipping_fee=shipping_fee,
        note=note,
    )


async def place_order(db, user, price="250000", quantity=1, payment_method="cod", **kwargs) -> Order:
    product, variant = await make_variant(db, price=price, stock=quantity + 10)
    await add_to_cart(db, user, product, variant, quantity)
    result = await create_order(db, user.id, order_payload(payment_method, **kwargs), notifier=RecordingNotifier())
    return result["order"]


# -----------------------
# Fresh reads (bypass the identity map)
# -----------------------
async def stock_of(db, variant_id) -> int:
    result = await db.execute(select(ProductVariant.stock_quantity).where(ProductVariant.id == variant_id))
    return result.scalar()


async def usage_count_of(db, coupon_id) -> int:
    result = await db.execute(select(Coupon.usage_count).where(Coupon.id == coupon_id))
    return result.scalar()


async def usage_rows_for_order(db, order_id) -> list:
    result = await db.execute(select(UserCouponUsage.id).where(UserCouponUsage.order_id == order_id))
    return result.scalars().all()


# -----------------------
# Fakes
# -----------------------
class RecordingNotifier(Notifier):
    def __init__(self):
        self.confirmations = []
        self.updates = []

    async def send_order_confirmation(self, order):
        self.confirmations.append(order.order_code)

    async def send_order_status_update(self, order):
        self.updates.append((order.order_code, order.status.value))


class BrokenNotifier(Notifier):
    async def send_order_confirmation(self, order):
        raise RuntimeError("smtp down")

    async def send_order_status_update(self, order):
        raise RuntimeError("smtp down")


class FakeResponse:
    def __init__(self, data):
        self._data = data

    def json(self):
        return self._data


class FakeMomoPost:
    """Stands in for requests.post against the MoMo create endpoint."""

    def __init__(self, result_code=0, message="Successful."):
        self.result_code = result_code
        self.message = message
        self.calls = []

    def __call__(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        data = {"resultCode": self.result_code, "message": self.message, "orderId": json["orderId"]}
        if self.result_code == 0:
            data.update({
                "payUrl": f"https://test-payment.momo.vn/pay/{json['orderId']}",
                "qrCodeUrl": f"momo://qr/{json['orderId']}",
                "deeplink": f"momo://app/{json['orderId']}",
            })
        return FakeResponse(data)


def make_momo_gateway(post=None) -> MomoGateway:
    return MomoGateway(
        partner_code="MOMOTEST",
        access_key="test-access-key",
        secret_key="test-secret-key",
        endpoint="https://test-payment.momo.vn/v2/gateway/api/create",
        ipn_url="http://localhost:8000/payments/momo/ipn",
        redirect_url="http://localhost:8000/payments/momo/return",
        post=post or FakeMomoPost(),
    )


def make_vnpay_gateway() -> VnpayGateway:
    return VnpayGateway(
        tmn_code="TESTTMN1",
        hash_secret="TESTHASHSECRET",
        pay_url="https://sandbox.vnpayment.vn/paymentv2/vpcpay.html",
        return_url="http://localhost:8000/payments/vnpay/return",
    )


def momo_ipn_payload(gateway: MomoGateway, payment, result_code=0, amount=None, message="Successful.") -> dict:
    payload = {
        "partnerCode": gateway.partner_code,
        "orderId": payment.order_code,
        "requestId": payment.gateway_request_id,
        "amount": amount if amount is not None else int(payment.amount),
        "orderInfo": f"Thanh toan don hang {payment.order_code}",
        "orderType": "momo_wallet",
        "transId": 4088878653,
        "resultCode": result_code,
        "message": message,
        "payType": "qr",
        "responseTime": 1721720663942,
        "extraData": str(payment.id),
    }
    payload["signature"] = gateway.expected_ipn_signature(payload)
    return payload
