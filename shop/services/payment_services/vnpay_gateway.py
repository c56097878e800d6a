# shop/services/payment_services/vnpay_gateway.py
"""
VNPay adapter. VNPay is redirect based: the pay URL is built and signed locally
and the result comes back as signed query parameters.
"""
import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from shop.core import config
from shop.core.exceptions import InvalidSignatureError
from shop.utils.decimal_utils import to_minor_units

logger = logging.getLogger(__name__)

PROVIDER = "vnpay"
SUCCESS_CODE = "00"
HASH_FIELDS = ("vnp_SecureHash", "vnp_SecureHashType")
VN_TZ = timezone(timedelta(hours=7))


def sign(secret: str, params: dict) -> str:
    """HMAC-SHA512 over the lexically sorted, form-encoded parameters."""
    query = urlencode(sorted((k, str(v)) for k, v in params.items() if k not in HASH_FIELDS))
    return hmac.new(secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha512).hexdigest()


class VnpayGateway:
    def __init__(self, tmn_code: str, hash_secret: str, pay_url: str, return_url: str):
        self.tmn_code = tmn_code
        self.hash_secret = hash_secret
        self.pay_url = pay_url
        self.return_url = return_url

    def build_payment_url(
        self,
        order_code: str,
        amount,
        return_url: Optional[str] = None,
        language: str = "vi",
        client_ip: str = "127.0.0.1",
        now: Optional[datetime] = None,
    ) -> str:
        created = (now or datetime.now(timezone.utc)).astimezone(VN_TZ)
        params = {
            "vnp_Version": "2.1.0",
            "vnp_Command": "pay",
            "vnp_TmnCode": self.tmn_code,
            "vnp_Locale": "en" if language == "en" else "vn",
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": order_code,
            "vnp_OrderInfo": f"Thanh toan don hang {order_code}",
            "vnp_OrderType": "other",
            # VNPay wants the amount in hundredths
            "vnp_Amount": to_minor_units(amount) * 100,
            "vnp_ReturnUrl": return_url or self.return_url,
            "vnp_IpAddr": client_ip,
            "vnp_CreateDate": created.strftime("%Y%m%d%H%M%S"),
        }
        query = urlencode(sorted((k, str(v)) for k, v in params.items()))
        return f"{self.pay_url}?{query}&vnp_SecureHash={sign(self.hash_secret, params)}"

    def verify_return(self, params: dict) -> None:
        received = str(params.get("vnp_SecureHash") or "").lower()
        expected = sign(self.hash_secret, params)
        if not received or not hmac.compare_digest(received, expected):
            logger.warning("Rejected VNPay callback for %s: bad signature", params.get("vnp_TxnRef"))
            raise InvalidSignatureError(PROVIDER)


def get_vnpay_gateway() -> VnpayGateway:
    return VnpayGateway(
        tmn_code=config.VNPAY_TMN_CODE,
        hash_secret=config.VNPAY_HASH_SECRET,
        pay_url=config.VNPAY_URL,
        return_url=config.VNPAY_RETURN_URL,
    )
