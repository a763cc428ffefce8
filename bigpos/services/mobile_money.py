"""
PalmKash mobile-money gateway.

Flow:
1. initiate_payment(amount, phone, reference, description) -> PaymentResult
2. The customer approves the push prompt on their phone
3. PalmKash calls the webhook; check_status(transaction_id) confirms the final state

DEV_MODE short-circuits the HTTP calls and reports an immediate success so
local runs and tests never reach the provider.

Environment variables:
- PALMKASH_CLIENT_ID / PALMKASH_SECRET_KEY: API credentials
- PALMKASH_ENV: 'sandbox' or 'live' (default: sandbox)
- BACKEND_URL: base URL used for the payment callback (POST /api/webhooks/palmkash)
"""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from bigpos.config import Settings, settings as default_settings
from bigpos.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


SETTLED_STATUSES = {"SUCCESS", "COMPLETED"}
FAILED_STATUSES = {"FAILED", "CANCELLED", "REJECTED", "EXPIRED"}


@dataclass
class PaymentResult:
    success: bool
    transaction_id: Optional[str] = None
    status: str = "PENDING"
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def settled(self) -> bool:
        """The customer has paid; anything else still waits for the callback."""
        return self.status.upper() in SETTLED_STATUSES

    @property
    def failed(self) -> bool:
        return self.status.upper() in FAILED_STATUSES


def normalize_phone(phone: str) -> str:
    """Local Rwandan numbers (07xxxxxxxx) become 2507xxxxxxxx."""
    phone = phone.strip().replace(" ", "")
    if phone.startswith("+"):
        phone = phone[1:]
    if phone.startswith("0") and len(phone) == 10:
        phone = "250" + phone[1:]
    return phone


class MobileMoneyGateway:
    """Thin client over the PalmKash REST API."""

    def __init__(self, config: Settings = default_settings, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return self.config.palmkash_base_url

    def _get_access_token(self) -> str:
        response = self.session.post(
            f"{self.base_url}/auth/token",
            json={"client_id": self.config.PALMKASH_CLIENT_ID, "client_secret": self.config.PALMKASH_SECRET_KEY},
            timeout=self.config.PALMKASH_TIMEOUT,
        )
        response.raise_for_status()
        return response.json()["access_token"]

    def initiate_payment(
        self, amount: Decimal, phone_number: str, reference_id: str, description: str,
        callback_url: Optional[str] = None
    ) -> PaymentResult:
        if self.config.DEV_MODE:
            logger.info(f"[PalmKash DEV MODE] Bypassing real payment for {phone_number}, amount {amount}")
            return PaymentResult(
                success=True,
                transaction_id=f"DEV-TXN-{int(time.time() * 1000)}",
                status="SUCCESS",
                message="Payment simulated (DEV_MODE active)",
            )

        phone = normalize_phone(phone_number)
        payload: Dict[str, Any] = {
            "amount": float(amount),
            "currency": self.config.CURRENCY,
            "phone": phone,
            "reference": reference_id,
            "description": description,
            "callback_url": callback_url or f"{self.config.BACKEND_URL}/api/webhooks/palmkash",
        }
        logger.info(f"[PalmKash] Initiating payment for {phone}, amount {amount}")
        try:
            token = self._get_access_token()
            response = self.session.post(
                f"{self.base_url}/payment/request",
                json=payload,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                timeout=self.config.PALMKASH_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"[PalmKash] Payment request failed: {e}")
            return PaymentResult(success=False, status="FAILED", error=str(e) or "PalmKash connection failed")
        except (KeyError, ValueError) as e:
            logger.error(f"[PalmKash] Unexpected response: {e}")
            return PaymentResult(success=False, status="FAILED", error="Invalid response from PalmKash")

        return PaymentResult(
            success=True,
            transaction_id=data.get("transaction_id") or data.get("reference"),
            status=data.get("status", "PENDING"),
            message=data.get("message", "Payment initiated"),
        )

    def check_status(self, transaction_id: str) -> PaymentResult:
        if self.config.DEV_MODE:
            return PaymentResult(success=True, transaction_id=transaction_id, status="SUCCESS")
        try:
            token = self._get_access_token()
            response = self.session.get(
                f"{self.base_url}/payment/status/{transaction_id}",
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.config.PALMKASH_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, KeyError, ValueError) as e:
            logger.error(f"[PalmKash] Status check failed for {transaction_id}: {e}")
            return PaymentResult(success=False, transaction_id=transaction_id, status="ERROR", error=str(e))
        status = data.get("status", "PENDING")
        return PaymentResult(success=status != "FAILED", transaction_id=transaction_id, status=status)

    def charge(self, amount: Decimal, phone_number: Optional[str], reference_id: str, description: str) -> PaymentResult:
        """Initiate a payment and raise if the gateway refuses it."""
        if not phone_number:
            raise PaymentGatewayError("Phone number is required for mobile money payments")
        result = self.initiate_payment(amount, phone_number, reference_id, description)
        if not result.success:
            raise PaymentGatewayError(f"Mobile money payment failed: {result.error}")
        return result


gateway = MobileMoneyGateway()
