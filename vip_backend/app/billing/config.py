"""VIP configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Tuple
import os


@dataclass(frozen=True)
class VipConfig:
    """Configuration for VIP purchases and their notifications."""

    promptpay_merchant_id: Optional[str]
    notifications_enabled: bool
    notification_link: str
    admin_page_size: int
    cors_origins: Tuple[str, ...]


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _split_csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_vip_config(env: Optional[Mapping[str, str]] = None) -> VipConfig:
    """Load :class:`VipConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    merchant_id = (env_mapping.get("PROMPTPAY_MERCHANT_ID") or "").strip() or None
    notifications_enabled = _to_bool(env_mapping.get("VIP_NOTIFICATIONS_ENABLED"), default=True)
    notification_link = env_mapping.get("VIP_NOTIFICATION_LINK", "/vip/my-subscriptions")
    admin_page_size = min(200, max(1, _to_int(env_mapping.get("VIP_ADMIN_PAGE_SIZE"), default=50)))
    cors_origins = _split_csv(env_mapping.get("CORS_ORIGINS")) or ("http://localhost:5173",)

    return VipConfig(
        promptpay_merchant_id=merchant_id,
        notifications_enabled=notifications_enabled,
        notification_link=notification_link,
        admin_page_size=admin_page_size,
        cors_origins=cors_origins,
    )


__all__ = ["VipConfig", "load_vip_config"]
