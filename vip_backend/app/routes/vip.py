"""API routes for buying and managing VIP subscriptions."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, status

from vip_backend import app_context

from ..entitlements import VipError
from ..schemas.vip import (
    CancelRequest,
    PricingResponse,
    PurchaseRequest,
    PurchaseResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
    VipStatusResponse,
)
from ..services.vip import get_vip_service

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


router = APIRouter(prefix="/api/vip", tags=["vip"])


@router.get("/pricing/{entity_kind}", response_model=PricingResponse)
def get_pricing(entity_kind: str) -> PricingResponse:
    service = get_vip_service()
    try:
        pricing, quotes = service.pricing(entity_kind)
    except VipError as exc:
        raise exc.to_http_exception() from exc
    return PricingResponse.build(pricing, quotes, service.available_payment_methods())


@router.get("/status/{entity_kind}/{entity_id}", response_model=VipStatusResponse)
def get_vip_status(entity_kind: str, entity_id: str) -> VipStatusResponse:
    service = get_vip_service()
    try:
        vip_status = service.vip_status(entity_kind, entity_id)
    except VipError as exc:
        raise exc.to_http_exception() from exc
    return VipStatusResponse.from_status(vip_status)


@router.post("/subscriptions", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
def purchase_subscription(
    payload: PurchaseRequest,
    *,
    current_user=Depends(_get_current_user),
) -> PurchaseResponse:
    service = get_vip_service()
    try:
        result = service.purchase(
            principal_id=str(current_user.id),
            entity_kind=payload.entity_kind,
            entity_id=payload.entity_id,
            tier=payload.tier,
            payment_method=payload.payment_method,
            is_admin=app_context.is_admin(current_user),
        )
    except VipError as exc:
        raise exc.to_http_exception() from exc
    return PurchaseResponse.from_result(result)


@router.get("/subscriptions/mine", response_model=SubscriptionListResponse)
def list_my_subscriptions(*, current_user=Depends(_get_current_user)) -> SubscriptionListResponse:
    service = get_vip_service()
    subscriptions = service.list_mine(str(current_user.id))
    return SubscriptionListResponse(
        subscriptions=[SubscriptionResponse.from_subscription(item) for item in subscriptions]
    )


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionResponse)
def cancel_subscription(
    subscription_id: str,
    payload: CancelRequest,
    *,
    current_user=Depends(_get_current_user),
) -> SubscriptionResponse:
    service = get_vip_service()
    try:
        cancelled = service.cancel(
            principal_id=str(current_user.id),
            subscription_id=subscription_id,
            entity_kind=payload.entity_kind,
            is_admin=app_context.is_admin(current_user),
        )
    except VipError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse.from_subscription(cancelled)
