"""
HTTP Client for the mobile-money payment gateway with retry logic
"""
import logging
import httpx
from decimal import Decimal
from typing import Dict, Optional
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from marketplace.config import settings
from marketplace.exceptions import PaymentGatewayError, PaymentGatewayUnavailableError

logger = logging.getLogger(__name__)


class PaymentGatewayClient:
    """Client for initiating collections with mobile-money providers"""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.PAYMENT_GATEWAY_URL
        self.timeout = settings.PAYMENT_GATEWAY_TIMEOUT
        self.transport = transport

    @retry(
        stop=stop_after_attempt(settings.MAX_RETRIES),
        wait=wait_exponential(multiplier=settings.RETRY_DELAY, min=1, max=10),
        retry=retry_if_exception_type(PaymentGatewayUnavailableError),
        reraise=True
    )
    async def initiate_payment(self, provider: str, reference: str, amount: Decimal,
                               currency: str, phone_number: str) -> Dict:
        """
        Ask the provider to collect amount from the customer's wallet

        The provider answers asynchronously through the webhook endpoint.

        Args:
            provider: Payment method name, e.g. tmoney
            reference: Our transaction reference, echoed back in the webhook
            amount: Amount to collect
            currency: Currency code
            phone_number: Customer wallet number

        Returns:
            Provider response payload

        Raises:
            PaymentGatewayUnavailableError: If the gateway is unreachable or failing
            PaymentGatewayError: If the gateway rejects the request
        """
        payload = {
            "reference": reference,
            "amount": str(amount),
            "currency": currency,
            "phone_number": phone_number,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/{provider}/payments", json=payload)
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            logger.warning("Error calling payment gateway for %s: %s", reference, e)
            raise PaymentGatewayUnavailableError(f"Payment gateway unavailable: {e}")

        if response.status_code in (200, 201, 202):
            return response.json()
        if response.status_code >= 500:
            raise PaymentGatewayUnavailableError(f"Payment gateway error: status {response.status_code}")
        raise PaymentGatewayError(f"Payment gateway rejected {reference}: status {response.status_code}")
