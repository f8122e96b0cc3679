"""Shippo rate provider adapter.

Creates a shipment with ``async: false`` so the response carries every
candidate rate inline. Transport failures, timeouts and 5xx answers are
retried once with backoff; anything still failing becomes RateProviderError.
"""

from decimal import ROUND_HALF_UP, Decimal

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from storefront.errors import RateProviderError
from storefront.shipping.port import Address, Parcel, Rate, RateProvider

logger = structlog.get_logger(__name__)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


def to_minor_units(amount: str | float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class ShippoRateProvider(RateProvider):
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.goshippo.com",
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not api_key and client is None:
            raise ValueError("SHIPPO_API_KEY is required for the Shippo rate provider")
        self.client = client or httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            headers={"Authorization": f"ShippoToken {api_key}"},
        )

    def get_rates(self, origin: Address, destination: Address, parcel: Parcel) -> list[Rate]:
        payload = {
            "address_from": origin.as_dict(),
            "address_to": destination.as_dict(),
            "parcels": [parcel.as_dict()],
            "async": False,
        }

        try:
            shipment = self._create_shipment(payload)
        except httpx.HTTPStatusError as exc:
            logger.warning("Shippo rejected shipment request", status_code=exc.response.status_code)
            raise RateProviderError(f"Shippo returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Shippo request failed", error=str(exc))
            raise RateProviderError(f"Shippo request failed: {exc}") from exc

        rates = []
        for raw in shipment.get("rates") or []:
            try:
                rates.append(
                    Rate(
                        rate_id=raw["object_id"],
                        provider=raw.get("provider", ""),
                        service_level=(raw.get("servicelevel") or {}).get("name", ""),
                        amount=to_minor_units(raw["amount"]),
                        currency=raw.get("currency", "USD").lower(),
                    )
                )
            except (KeyError, ArithmeticError) as exc:
                logger.warning("Skipping unparseable Shippo rate", rate=raw, error=str(exc))
        return rates

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    def _create_shipment(self, payload: dict) -> dict:
        response = self.client.post("/shipments/", json=payload)
        response.raise_for_status()
        return response.json()
