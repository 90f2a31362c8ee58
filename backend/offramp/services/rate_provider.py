"""
Rate Provider — USD→INR reference rate.

`ExchangeRateApiProvider` calls exchangerate-api v6 and degrades to the
configured fallback rate on any failure; it never raises. Sandbox deployments
use `FixedRateProvider`. `make_rate_provider` picks one from settings.
"""
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from offramp.config import Settings

logger = logging.getLogger(__name__)


class RateProvider(ABC):
    @abstractmethod
    def get_usd_inr_rate(self) -> Decimal:
        """INR per 1 USD."""
        raise NotImplementedError


class FixedRateProvider(RateProvider):
    def __init__(self, rate):
        self.rate = Decimal(str(rate))

    def get_usd_inr_rate(self) -> Decimal:
        return self.rate


class ExchangeRateApiProvider(RateProvider):
    """`GET {base}/{api_key}/latest/USD`, reading `conversion_rates.INR`."""

    def __init__(self, api_key: str, base_url: str, fallback_rate, timeout: float = 10.0,
                 client: Optional[httpx.Client] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.fallback_rate = Decimal(str(fallback_rate))
        self.timeout = timeout
        self._client = client

    def _fetch(self) -> dict:
        url = f"{self.base_url}/{self.api_key}/latest/USD"
        if self._client is not None:
            response = self._client.get(url, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(url)
        response.raise_for_status()
        return response.json()

    def get_usd_inr_rate(self) -> Decimal:
        if not self.api_key:
            logger.warning("[FX] EXCHANGE_RATE_API_KEY not set, using fallback rate %s", self.fallback_rate)
            return self.fallback_rate

        try:
            data = self._fetch()
        except httpx.TimeoutException:
            logger.warning("[FX] Rate API timed out, using fallback rate %s", self.fallback_rate)
            return self.fallback_rate
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("[FX] Rate API failed (%s), using fallback rate %s", e, self.fallback_rate)
            return self.fallback_rate

        if not isinstance(data, dict) or data.get("result") != "success":
            logger.warning("[FX] Rate API returned non-success payload, using fallback rate %s",
                           self.fallback_rate)
            return self.fallback_rate

        raw_rate = (data.get("conversion_rates") or {}).get("INR")
        try:
            rate = Decimal(str(raw_rate))
        except (InvalidOperation, ValueError):
            rate = None
        if rate is None or not rate.is_finite() or rate <= 0:
            logger.warning("[FX] Rate API returned invalid INR rate %r, using fallback rate %s",
                           raw_rate, self.fallback_rate)
            return self.fallback_rate

        return rate


def make_rate_provider(settings: Settings) -> RateProvider:
    if settings.is_sandbox:
        return FixedRateProvider(settings.FALLBACK_USD_INR_RATE)
    return ExchangeRateApiProvider(
        api_key=settings.EXCHANGE_RATE_API_KEY,
        base_url=settings.EXCHANGE_RATE_API_BASE_URL,
        fallback_rate=settings.FALLBACK_USD_INR_RATE,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
