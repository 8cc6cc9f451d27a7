from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse
from typing import Dict, Any, Optional

# Utils
from utils.log_utils import LogUtil

# Services
from services.webhook_service import WebhookService

# Exceptions
from exceptions.flow_exception import ErrorKind

# Models
from models.request.inbound_message_request import InboundMessageRequest
from models.request.messenger_webhook_request import MessengerWebhookRequest
from models.response.inbound_message_response import InboundResult


def create_webhook_message_api(
    log_util: LogUtil,
    webhook_service: WebhookService
) -> APIRouter:
    """
    Create API router for inbound channel traffic: the Messenger page webhook
    and a normalized message endpoint for other integrations.
    """
    router = APIRouter(
        prefix="/webhook",
        tags=["webhook"],
    )

    @router.post("/message", response_model=InboundResult)
    async def process_inbound_message(request: InboundMessageRequest) -> InboundResult:
        """
        Run one normalized inbound message through the flow engine.
        Engine errors are returned in the result body, not as HTTP errors.
        """
        try:
            return await webhook_service.process_inbound_message(request)
        except Exception as e:
            log_util.error(
                service_name="WebhookMessageAPI",
                message=f"Error processing inbound message for contact {request.contact_id}: {str(e)}"
            )
            return InboundResult(error=ErrorKind.INTERNAL, error_message=str(e))

    @router.get("/messenger/{bot_id}", response_class=PlainTextResponse)
    async def verify_messenger_webhook(
        bot_id: str,
        mode: Optional[str] = Query(None, alias="hub.mode"),
        verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
        challenge: Optional[str] = Query(None, alias="hub.challenge")
    ) -> str:
        challenge_reply = await webhook_service.verify_subscription(bot_id, mode, verify_token, challenge)
        if challenge_reply is None:
            raise HTTPException(status_code=403, detail="Verification failed")
        return challenge_reply

    @router.post("/messenger/{bot_id}")
    async def receive_messenger_webhook(bot_id: str, body: MessengerWebhookRequest) -> Dict[str, Any]:
        """
        Messenger page webhook. Always acknowledged with 200 once parsed; per-event
        failures are logged and reported in the engine results.
        """
        try:
            return await webhook_service.process_messenger_webhook(bot_id, body)
        except Exception as e:
            log_util.error(
                service_name="WebhookMessageAPI",
                message=f"Error processing Messenger webhook for bot {bot_id}: {str(e)}"
            )
            return {"status": "error", "processed": 0}

    @router.get("/health")
    async def webhook_health_check() -> Dict[str, Any]:
        """Health check endpoint for webhook API"""
        return {
            "status": "healthy",
            "api": "webhook_message_api",
            "service": "chatflow_engine"
        }

    return router
