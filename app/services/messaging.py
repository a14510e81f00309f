"""Outbound delivery of consent links by SMS or email.

Every attempt is written to the ``messages`` table whether or not the
provider accepted it; consent requests rely on that row to report a failed
delivery without losing the issued token.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.messaging import Message, MessageChannel, MessageStatus

logger = logging.getLogger(__name__)

SMS_SEGMENT_CHARS = 160
SMS_CONCAT_SEGMENT_CHARS = 153


class MessageProviderError(Exception):
    """Raised by a provider that refused or could not take a message."""


@dataclass
class DeliveryReceipt:
    """Provider acknowledgement for an accepted message."""

    provider: str
    provider_message_id: str
    details: dict = field(default_factory=dict)


class MessageProvider(ABC):
    """Transport for one channel."""

    name: str = "unknown"

    @abstractmethod
    async def deliver(
        self,
        recipient: str,
        body: str,
        subject: str | None = None,
    ) -> DeliveryReceipt:
        """Hand a message to the transport.

        Raises:
            MessageProviderError: If the transport rejects the message
        """


def sms_segments(body: str) -> int:
    """Number of SMS segments a body will be billed as."""
    if len(body) <= SMS_SEGMENT_CHARS:
        return 1
    return math.ceil(len(body) / SMS_CONCAT_SEGMENT_CHARS)


class SMSProvider(MessageProvider):
    """SMS gateway.

    No gateway is wired in; messages are accepted and logged without the
    body, since it carries the consent link.
    """

    name = "sms_gateway"

    def __init__(self, sender_id: str | None = None) -> None:
        self.sender_id = sender_id or settings.sms_sender_id

    async def deliver(
        self,
        recipient: str,
        body: str,
        subject: str | None = None,
    ) -> DeliveryReceipt:
        segments = sms_segments(body)
        logger.info(f"SMS accepted: {segments} segment(s) from {self.sender_id}")
        return DeliveryReceipt(
            provider=self.name,
            provider_message_id=f"sms_{uuid4().hex[:16]}",
            details={"sender_id": self.sender_id, "segments": segments},
        )


class EmailProvider(MessageProvider):
    """Email relay; accepts and logs like :class:`SMSProvider`."""

    name = "email_relay"

    def __init__(self, from_address: str | None = None, from_name: str | None = None) -> None:
        self.from_address = from_address or settings.email_from_address
        self.from_name = from_name or settings.clinic_name

    async def deliver(
        self,
        recipient: str,
        body: str,
        subject: str | None = None,
    ) -> DeliveryReceipt:
        logger.info(f"Email accepted from {self.from_address}")
        return DeliveryReceipt(
            provider=self.name,
            provider_message_id=f"email_{uuid4().hex[:16]}",
            details={"from": f"{self.from_name} <{self.from_address}>"},
        )


class MessagingService:
    """Sends patient messages and keeps the outbound log."""

    def __init__(
        self,
        session: AsyncSession,
        sms_provider: MessageProvider | None = None,
        email_provider: MessageProvider | None = None,
    ):
        self.session = session
        self.providers: dict[MessageChannel, MessageProvider] = {
            MessageChannel.SMS: sms_provider or SMSProvider(),
            MessageChannel.EMAIL: email_provider or EmailProvider(),
        }

    async def send_message(
        self,
        patient_id: str,
        channel: MessageChannel,
        recipient_address: str,
        body: str,
        subject: str | None = None,
        consent_token_id: str | None = None,
        metadata: dict | None = None,
    ) -> Message:
        """Send a message and record the attempt.

        Provider failures do not raise; the returned message has status
        FAILED and carries the provider error.
        """
        message = Message(
            id=str(uuid4()),
            patient_id=patient_id,
            consent_token_id=consent_token_id,
            channel=channel,
            recipient_address=recipient_address,
            subject=subject,
            body=body,
            status=MessageStatus.PENDING,
            message_metadata=metadata,
        )
        self.session.add(message)

        provider = self.providers[channel]
        try:
            receipt = await provider.deliver(recipient_address, body, subject=subject)
        except MessageProviderError as e:
            logger.error(
                f"{channel.value} delivery failed via {provider.name}: {e}",
                extra={"patient_id": patient_id},
            )
            message.provider = provider.name
            message.update_status(MessageStatus.FAILED, error=str(e))
        else:
            message.provider = receipt.provider
            message.provider_message_id = receipt.provider_message_id
            message.message_metadata = {**(metadata or {}), **receipt.details}
            message.update_status(MessageStatus.SENT)

        await self.session.commit()
        await self.session.refresh(message)
        return message
