from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml


logger = logging.getLogger(__name__)


DEFAULT_CONFIG_FILE_NAME = "config.yaml"
CONFIG_PATH_ENV = "LEDGER_CONFIG_PATH"
FREE_TIER_CREDITS_ENV = "APP_BUILDER_FREE_CREDITS_PER_MONTH"


@dataclass(slots=True)
class CreditPackage:
    credits: int
    price: float
    bonus: int = 0

    @property
    def total_credits(self) -> int:
        return self.credits + self.bonus


@dataclass(slots=True)
class SubscriptionTier:
    name: str
    monthly_price: float
    credits_per_month: int
    additional_credit_price: float = 0.0
    description: str = ""

    @property
    def is_free(self) -> bool:
        return self.monthly_price <= 0


@dataclass(slots=True)
class LedgerSettings:
    # 낙관적 append 충돌 시 재시도 상한. 동시 작성자 수보다 커야 한다.
    max_write_attempts: int = 50


@dataclass(slots=True)
class ClaimSettings:
    free_tier_credits: int = 100
    free_tier_description: str = "Welcome! Start building apps with free credits"
    # pending 클레임이 이 시간보다 오래되면 중단된 것으로 보고 이어서 처리한다.
    pending_timeout_seconds: int = 60


@dataclass(slots=True)
class BillingSettings:
    period_days: int = 30
    max_catch_up_periods: int = 12


def _default_packages() -> list[CreditPackage]:
    return [
        CreditPackage(credits=100, price=5.00),
        CreditPackage(credits=500, price=20.00, bonus=50),
        CreditPackage(credits=1000, price=35.00, bonus=150),
        CreditPackage(credits=2500, price=75.00, bonus=500),
        CreditPackage(credits=5000, price=125.00, bonus=1500),
    ]


def _default_tiers() -> dict[str, SubscriptionTier]:
    free_credits = int(os.getenv(FREE_TIER_CREDITS_ENV, "50"))
    tiers = [
        SubscriptionTier(
            name="free",
            monthly_price=0,
            credits_per_month=free_credits,
            additional_credit_price=0.05,
            description="Perfect for non-commercial projects and learning",
        ),
        SubscriptionTier(
            name="starter",
            monthly_price=20,
            credits_per_month=200,
            additional_credit_price=0.05,
            description="Perfect for small projects",
        ),
        SubscriptionTier(
            name="professional",
            monthly_price=100,
            credits_per_month=2500,
            additional_credit_price=0.04,
            description="For growing businesses",
        ),
        SubscriptionTier(
            name="enterprise",
            monthly_price=500,
            credits_per_month=15000,
            additional_credit_price=0.03,
            description="For large-scale applications",
        ),
    ]
    return {tier.name: tier for tier in tiers}


@dataclass(slots=True)
class AppConfig:
    """credit-ledger 서비스 비즈니스 설정 루트.

    인프라 설정(MONGO_URI, KAFKA_* 등)은 환경 변수에서 읽고,
    요금/지급량처럼 운영자가 바꾸는 값은 config.yaml 에서 읽는다.
    """

    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    claims: ClaimSettings = field(default_factory=ClaimSettings)
    billing: BillingSettings = field(default_factory=BillingSettings)
    credit_packages: list[CreditPackage] = field(default_factory=_default_packages)
    tiers: dict[str, SubscriptionTier] = field(default_factory=_default_tiers)


def _find_config_path() -> Path | None:
    """LEDGER_CONFIG_PATH 또는 현재 작업 디렉토리부터 상위로 올라가며 config.yaml 을 찾는다."""

    explicit = os.getenv(CONFIG_PATH_ENV, "").strip()
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            raise RuntimeError(f"{CONFIG_PATH_ENV} points to a missing file: {path}")
        return path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / DEFAULT_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def _positive_int(section: dict[str, Any], key: str, default: int, path: Path) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:  # noqa: TRY003
        raise RuntimeError(f"invalid {key} in {path}: {raw!r}") from exc
    if value <= 0:
        raise RuntimeError(f"{key} in {path} must be positive, got {value}")
    return value


def _parse_packages(raw: Any, path: Path) -> list[CreditPackage]:
    packages: list[CreditPackage] = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        try:
            packages.append(
                CreditPackage(
                    credits=int(item["credits"]),
                    price=float(item["price"]),
                    bonus=int(item.get("bonus") or 0),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:  # noqa: TRY003
            raise RuntimeError(f"invalid credit package in {path}: {item!r}") from exc
    return packages


def _parse_tiers(raw: Any, path: Path) -> dict[str, SubscriptionTier]:
    tiers: dict[str, SubscriptionTier] = {}
    if not isinstance(raw, dict):
        return tiers
    for name, item in raw.items():
        if not isinstance(item, dict):
            continue
        try:
            tiers[str(name)] = SubscriptionTier(
                name=str(name),
                monthly_price=float(item.get("monthly_price", 0)),
                credits_per_month=int(item["credits_per_month"]),
                additional_credit_price=float(item.get("additional_credit_price", 0)),
                description=str(item.get("description") or ""),
            )
        except (KeyError, TypeError, ValueError) as exc:  # noqa: TRY003
            raise RuntimeError(f"invalid tier {name!r} in {path}: {item!r}") from exc
    return tiers


def load_config_from_path(path: Path) -> AppConfig:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    config = AppConfig()

    ledger = data.get("ledger") or {}
    config.ledger.max_write_attempts = _positive_int(
        ledger, "max_write_attempts", config.ledger.max_write_attempts, path
    )

    claims = data.get("claims") or {}
    config.claims.free_tier_credits = _positive_int(
        claims, "free_tier_credits", config.claims.free_tier_credits, path
    )
    config.claims.free_tier_description = str(
        claims.get("free_tier_description") or config.claims.free_tier_description
    )
    config.claims.pending_timeout_seconds = _positive_int(
        claims, "pending_timeout_seconds", config.claims.pending_timeout_seconds, path
    )

    billing = data.get("billing") or {}
    config.billing.period_days = _positive_int(
        billing, "period_days", config.billing.period_days, path
    )
    config.billing.max_catch_up_periods = _positive_int(
        billing, "max_catch_up_periods", config.billing.max_catch_up_periods, path
    )

    packages = _parse_packages(data.get("credit_packages"), path)
    if packages:
        config.credit_packages = packages

    tiers = _parse_tiers(data.get("subscription_tiers"), path)
    if tiers:
        config.tiers = tiers

    return config


def load_config() -> AppConfig:
    """설정 파일을 찾아 AppConfig 로 반환한다. 파일이 없으면 기본값을 사용한다."""

    path = _find_config_path()
    if path is None:
        logger.info("%s not found, using built-in ledger defaults", DEFAULT_CONFIG_FILE_NAME)
        return AppConfig()

    logger.info("loading ledger config from %s", path)
    return load_config_from_path(path)


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """FastAPI DI용 설정 팩토리 (프로세스당 한 번 로드)."""

    return load_config()
