import asyncio
from typing import Optional, Dict, Any, List

# Utils
from utils.log_utils import LogUtil

# Database
from database.base_db import BaseFlowDB

# Services
from services.channel_message_adapter import ChannelMessageAdapter, NormalizedMessage
from services.execution_coordinator_service import ExecutionCoordinatorService

# Models
from models.request.inbound_message_request import InboundMessageRequest
from models.request.messenger_webhook_request import MessengerWebhookRequest
from models.response.inbound_message_response import InboundResult


class WebhookService:
    """
    Service for handling webhook deliveries from the messaging channel.
    Verifies subscriptions, normalizes page events and hands them to the coordinator.
    """

    def __init__(
        self,
        log_util: LogUtil,
        flow_db: BaseFlowDB,
        execution_coordinator_service: ExecutionCoordinatorService
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.execution_coordinator_service = execution_coordinator_service
        self.channel_adapter = ChannelMessageAdapter(log_util)

    async def verify_subscription(
        self,
        bot_id: str,
        mode: Optional[str],
        verify_token: Optional[str],
        challenge: Optional[str]
    ) -> Optional[str]:
        """
        Messenger subscription handshake. Returns the challenge to echo, or None to refuse.
        """
        bot = await self.flow_db.get_bot(bot_id)
        if mode != "subscribe" or bot is None or not bot.webhook_verify_token:
            self.log_util.warning(
                service_name="WebhookService",
                message=f"Webhook verification refused for bot {bot_id} (mode: {mode})"
            )
            return None
        if verify_token != bot.webhook_verify_token:
            self.log_util.warning(
                service_name="WebhookService",
                message=f"Webhook verification token mismatch for bot {bot_id}"
            )
            return None
        self.log_util.info(service_name="WebhookService", message=f"Webhook verified for bot {bot_id}")
        return challenge

    async def process_inbound_message(self, request: InboundMessageRequest) -> InboundResult:
        """
        Run an already-normalized inbound message through the engine
        """
        return await self.execution_coordinator_service.handle_inbound_message(
            bot_id=request.bot_id,
            contact_id=request.contact_id,
            text=request.text,
            quick_reply_payload=request.quick_reply_payload,
            message_id=request.message_id
        )

    async def process_messenger_webhook(self, bot_id: str, body: MessengerWebhookRequest) -> Dict[str, Any]:
        """
        Process one Messenger page webhook delivery.

        Events of one sender run in delivery order; different senders run concurrently.
        Inactive or unknown bots are acknowledged without processing so the platform
        does not keep redelivering.
        """
        if body.object != "page":
            self.log_util.warning(
                service_name="WebhookService",
                message=f"Ignoring webhook object '{body.object}' for bot {bot_id}"
            )
            return {"status": "ignored", "processed": 0}

        bot = await self.flow_db.get_bot(bot_id)
        if bot is None or not bot.is_active:
            self.log_util.info(
                service_name="WebhookService",
                message=f"Bot {bot_id} is unknown or inactive, acknowledging without processing"
            )
            return {"status": "ignored", "processed": 0}

        by_sender: Dict[str, List[NormalizedMessage]] = {}
        for entry in body.entry:
            for event in entry.messaging:
                normalized = self.channel_adapter.normalize_event(event)
                if normalized is not None:
                    by_sender.setdefault(normalized.contact_id, []).append(normalized)

        results = await asyncio.gather(
            *(self._process_sender(bot_id, messages) for messages in by_sender.values())
        )
        processed = sum(results)
        self.log_util.info(
            service_name="WebhookService",
            message=f"Processed {processed} event(s) from {len(by_sender)} sender(s) for bot {bot_id}"
        )
        return {"status": "success", "processed": processed}

    async def _process_sender(self, bot_id: str, messages: List[NormalizedMessage]) -> int:
        processed = 0
        for message in messages:
            result = await self.execution_coordinator_service.handle_inbound_message(
                bot_id=bot_id,
                contact_id=message.contact_id,
                text=message.text,
                quick_reply_payload=message.quick_reply_payload,
                message_id=message.message_id
            )
            if result.error is not None:
                self.log_util.warning(
                    service_name="WebhookService",
                    message=f"Event {message.to_dict()} finished with {result.error.value}: {result.error_message}"
                )
            processed += 1
        return processed
