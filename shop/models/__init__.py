# shop/models/__init__.py
from shop.models.user_models import User
from shop.models.activity_models import UserActivity
from shop.models.catalog_models import Product, ProductVariant
from shop.models.cart_models import Cart, CartItem
from shop.models.coupon_models import Coupon, UserCouponUsage, DiscountType
from shop.models.order_models import Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod
from shop.models.payment_models import Payment, PaymentRecordStatus
from shop.models.auto_coupon_models import AutoCouponRule, UserCouponRedemption, TriggerType
