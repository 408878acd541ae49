"""Administrator routes for settling VIP payments."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, status

from vip_backend import app_context

from ..billing import load_vip_config
from ..entitlements import VipError
from ..schemas.vip import (
    AdminTransactionListResponse,
    AdminTransactionResponse,
    ExpireLapsedResponse,
    PaymentResolutionResponse,
    RejectPaymentRequest,
    VerifyPaymentRequest,
)
from ..services.vip import get_vip_service

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _require_admin(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    user = app_context.get_current_user(session_token=session_token)
    if not app_context.is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


router = APIRouter(prefix="/api/vip/admin", tags=["vip-admin"])


@router.get("/transactions", response_model=AdminTransactionListResponse)
def list_transactions(
    method: Optional[str] = Query(None),
    payment_status: Optional[str] = Query(None, alias="status"),
    limit: Optional[int] = Query(None, ge=1, le=200),
    offset: int = Query(0, ge=0),
    *,
    admin_user=Depends(_require_admin),
) -> AdminTransactionListResponse:
    service = get_vip_service()
    page_size = limit or load_vip_config().admin_page_size
    try:
        items, total = service.list_transactions(
            method=method, status=payment_status, limit=page_size, offset=offset
        )
    except VipError as exc:
        raise exc.to_http_exception() from exc
    return AdminTransactionListResponse(
        items=[AdminTransactionResponse.from_view(item) for item in items],
        total=total,
        limit=page_size,
        offset=offset,
    )


@router.post("/transactions/{transaction_id}/verify", response_model=PaymentResolutionResponse)
def verify_transaction(
    transaction_id: str,
    payload: Optional[VerifyPaymentRequest] = None,
    *,
    admin_user=Depends(_require_admin),
) -> PaymentResolutionResponse:
    service = get_vip_service()
    try:
        transaction, subscription = service.verify_cash_payment(
            admin_id=str(admin_user.id),
            transaction_id=transaction_id,
            admin_notes=payload.admin_notes if payload else None,
        )
    except VipError as exc:
        raise exc.to_http_exception() from exc
    return PaymentResolutionResponse.from_pair(transaction, subscription)


@router.post("/transactions/{transaction_id}/reject", response_model=PaymentResolutionResponse)
def reject_transaction(
    transaction_id: str,
    payload: RejectPaymentRequest,
    *,
    admin_user=Depends(_require_admin),
) -> PaymentResolutionResponse:
    service = get_vip_service()
    try:
        transaction, subscription = service.reject_payment(
            admin_id=str(admin_user.id),
            transaction_id=transaction_id,
            admin_notes=payload.admin_notes,
        )
    except VipError as exc:
        raise exc.to_http_exception() from exc
    return PaymentResolutionResponse.from_pair(transaction, subscription)


@router.post("/subscriptions/expire", response_model=ExpireLapsedResponse)
def expire_lapsed_subscriptions(*, admin_user=Depends(_require_admin)) -> ExpireLapsedResponse:
    service = get_vip_service()
    return ExpireLapsedResponse(expired=service.expire_lapsed_subscriptions())
