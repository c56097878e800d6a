# shop/services/payment_services/momo_gateway.py
"""
MoMo wallet adapter: signed create-payment call and IPN signature check.

MoMo signs a `key=value&...` string whose keys are listed in a fixed,
documented order, with HMAC-SHA256 over the partner secret key.
"""
import hashlib
import hmac
import logging
import time
from typing import Callable, Optional

import requests
from starlette.concurrency import run_in_threadpool

from shop.core import config
from shop.core.exceptions import GatewayError, InvalidSignatureError

logger = logging.getLogger(__name__)

PROVIDER = "momo"
SUCCESS_CODE = 0

CREATE_SIGNATURE_FIELDS = (
    "accessKey", "amount", "extraData", "ipnUrl", "orderId", "orderInfo",
    "partnerCode", "redirectUrl", "requestId", "requestType",
)
IPN_SIGNATURE_FIELDS = (
    "accessKey", "amount", "extraData", "message", "orderId", "orderInfo", "orderType",
    "partnerCode", "payType", "requestId", "responseTime", "resultCode", "transId",
)


def sign(secret_key: str, raw: str) -> str:
    return hmac.new(secret_key.encode("utf-8"), raw.encode("utf-8"), hashlib.sha256).hexdigest()


def build_raw_signature(fields: tuple, values: dict) -> str:
    return "&".join(f"{key}={'' if values.get(key) is None else values.get(key)}" for key in fields)


class MomoGateway:
    def __init__(
        self,
        partner_code: str,
        access_key: str,
        secret_key: str,
        endpoint: str,
        ipn_url: str,
        redirect_url: str,
        timeout: float = 10,
        post: Optional[Callable] = None,
    ):
        self.partner_code = partner_code
        self.access_key = access_key
        self.secret_key = secret_key
        self.endpoint = endpoint
        self.ipn_url = ipn_url
        self.redirect_url = redirect_url
        self.timeout = timeout
        self._post = post or requests.post

    async def create_payment(self, order_code: str, amount: int, extra_data: str = "", redirect_url: Optional[str] = None, lang: str = "vi") -> dict:
        """Ask MoMo for a pay URL. Raises GatewayError on transport failure or a non-zero resultCode."""
        request_id = f"{order_code}_{int(time.time() * 1000)}"
        body = {
            "accessKey": self.access_key,
            "amount": str(amount),
            "extraData": extra_data,
            "ipnUrl": self.ipn_url,
            "orderId": order_code,
            "orderInfo": f"Thanh toan don hang {order_code}",
            "partnerCode": self.partner_code,
            "redirectUrl": redirect_url or self.redirect_url,
            "requestId": request_id,
            "requestType": "captureWallet",
        }
        body["signature"] = sign(self.secret_key, build_raw_signature(CREATE_SIGNATURE_FIELDS, body))
        # accessKey is part of the signature but not of the request body
        body.pop("accessKey")
        body.update({"lang": lang, "autoCapture": True, "orderExpireTime": config.PAYMENT_EXPIRE_MINUTES})

        try:
            response = await run_in_threadpool(self._post, self.endpoint, json=body, timeout=self.timeout)
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("MoMo create payment for %s failed: %s", order_code, e)
            raise GatewayError(PROVIDER, provider_message=str(e))

        result_code = data.get("resultCode")
        if result_code != SUCCESS_CODE:
            logger.warning("MoMo rejected %s: resultCode=%s message=%s", order_code, result_code, data.get("message"))
            raise GatewayError(PROVIDER, code=result_code, provider_message=data.get("message"))

        return {
            "request_id": request_id,
            "pay_url": data.get("payUrl"),
            "qr_code_url": data.get("qrCodeUrl"),
            "deeplink": data.get("deeplink"),
            "raw": data,
        }

    def expected_ipn_signature(self, payload: dict) -> str:
        values = dict(payload)
        values["accessKey"] = self.access_key
        return sign(self.secret_key, build_raw_signature(IPN_SIGNATURE_FIELDS, values))

    def verify_ipn(self, payload: dict) -> None:
        """Raises InvalidSignatureError unless the payload carries MoMo's signature."""
        received = str(payload.get("signature") or "")
        if not received or not hmac.compare_digest(received, self.expected_ipn_signature(payload)):
            logger.warning("Rejected MoMo callback for %s: bad signature", payload.get("orderId"))
            raise InvalidSignatureError(PROVIDER)


def get_momo_gateway() -> MomoGateway:
    return MomoGateway(
        partner_code=config.MOMO_PARTNER_CODE,
        access_key=config.MOMO_ACCESS_KEY,
        secret_key=config.MOMO_SECRET_KEY,
        endpoint=config.MOMO_ENDPOINT,
        ipn_url=f"{config.BACKEND_URL}/payments/momo/ipn",
        redirect_url=f"{config.BACKEND_URL}/payments/momo/return",
        timeout=config.MOMO_REQUEST_TIMEOUT,
    )
