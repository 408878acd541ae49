"""PromptPay QR generation for the instant payment method.

The payload string comes from the ``promptpay`` package and is rendered to a
PNG data URL with ``qrcode`` so clients can show it directly.
"""
from __future__ import annotations

import base64
import io
import logging
import re
from dataclasses import dataclass
from typing import Optional

import qrcode
from promptpay import qrcode as promptpay_qrcode

logger = logging.getLogger(__name__)

QR_BOX_SIZE = 10
QR_BORDER = 2

_PHONE_PATTERN = re.compile(r"^0\d{9}$")
_TAX_ID_PATTERN = re.compile(r"^\d{13}$")


class QRProviderNotConfigured(RuntimeError):
    """Raised when no valid PromptPay merchant id is available."""


@dataclass(frozen=True)
class InstantPayment:
    """What the payer needs to settle an instant QR payment."""

    qr_payload: str
    qr_image: str
    settlement_reference: str
    amount: int


def is_valid_merchant_id(merchant_id: Optional[str]) -> bool:
    if not merchant_id:
        return False
    return bool(_PHONE_PATTERN.match(merchant_id) or _TAX_ID_PATTERN.match(merchant_id))


def build_payload(merchant_id: str, amount: int) -> str:
    """Return the PromptPay payload for ``amount`` baht payable to ``merchant_id``."""

    if not is_valid_merchant_id(merchant_id):
        raise QRProviderNotConfigured("Invalid PromptPay merchant ID format")
    if amount <= 0:
        raise ValueError("Amount must be greater than 0")
    return promptpay_qrcode.generate_payload(merchant_id, float(amount))


def render_data_url(payload: str) -> str:
    qr = qrcode.QRCode(box_size=QR_BOX_SIZE, border=QR_BORDER)
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer)
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


class PromptPayQRGenerator:
    """Instant payment collaborator backed by a PromptPay merchant id.

    The reference is returned exactly as given; the payer quotes it with the
    transfer and the verifier hands it back to ``confirm_instant_payment``.
    """

    def __init__(self, merchant_id: Optional[str]) -> None:
        self._merchant_id = (merchant_id or "").strip() or None

    def is_configured(self) -> bool:
        return is_valid_merchant_id(self._merchant_id)

    def generate(self, amount: int, reference: str) -> InstantPayment:
        if not self._merchant_id:
            raise QRProviderNotConfigured("PromptPay merchant ID not configured")
        payload = build_payload(self._merchant_id, amount)
        image = render_data_url(payload)
        logger.info("Generated PromptPay QR reference=%s amount=%s", reference, amount)
        return InstantPayment(
            qr_payload=payload,
            qr_image=image,
            settlement_reference=reference,
            amount=amount,
        )


__all__ = [
    "InstantPayment",
    "PromptPayQRGenerator",
    "QRProviderNotConfigured",
    "build_payload",
    "is_valid_merchant_id",
    "render_data_url",
]
