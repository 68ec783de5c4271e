"""Email delivery through the Resend HTTP API."""

from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

from changereel.core.errors import AuthError, NonRetryableError, TransientExternalError
from changereel.core.logging import get_logger

logger = get_logger(__name__)


class EmailMessage(BaseModel):
    to: List[str]
    sender: str = Field(..., serialization_alias="from")
    subject: str
    html: str
    headers: dict[str, str] = Field(default_factory=dict)


class SendEmailResponse(BaseModel):
    id: str
    status: str = "queued"
    provider: str = "resend"


class EmailClient:
    """Thin async client for POST /emails."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.resend.com",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ValueError("RESEND_API_KEY is required to send email")
        self.api_key = api_key
        self.client = http_client or httpx.AsyncClient(base_url=base_url, timeout=30.0)

    async def send_email(self, message: EmailMessage) -> SendEmailResponse:
        """
        Send one message.

        Raises:
            AuthError: If the API key is rejected
            NonRetryableError: If the message is rejected as invalid
            TransientExternalError: On rate limits, 5xx and network failures
        """
        payload = message.model_dump(by_alias=True, exclude_none=True)
        if not payload.get("headers"):
            payload.pop("headers", None)

        try:
            response = await self.client.post(
                "/emails",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.RequestError as e:
            logger.error("Email delivery request failed", error=str(e))
            raise TransientExternalError(f"Email delivery failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthError("Email provider rejected the API key", status_code=response.status_code)
        if response.status_code in (400, 422):
            raise NonRetryableError(
                f"Email provider rejected the message: {response.text[:200]}",
                details={"status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise TransientExternalError(
                f"Email provider error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        data = response.json()
        logger.info("Email sent", email_id=data.get("id"), recipients=len(message.to))
        return SendEmailResponse(id=data.get("id", ""), status="sent")

    async def close(self) -> None:
        await self.client.aclose()
