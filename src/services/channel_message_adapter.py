"""
Channel Message Adapter Service
Normalizes Messenger webhook events to the engine's inbound message shape.
"""
from typing import Optional, Dict, Any
from utils.log_utils import LogUtil

# Models
from models.request.messenger_webhook_request import MessengerEvent


class NormalizedMessage:
    """
    Normalized inbound message: text and/or payload from one sender.
    """
    def __init__(
        self,
        contact_id: str,
        text: Optional[str] = None,
        quick_reply_payload: Optional[str] = None,
        message_id: Optional[str] = None
    ):
        self.contact_id = contact_id
        self.text = text
        self.quick_reply_payload = quick_reply_payload
        self.message_id = message_id

    def is_empty(self) -> bool:
        return not self.text and not self.quick_reply_payload

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        result = {"contact_id": self.contact_id}
        if self.text:
            result["text"] = self.text
        if self.quick_reply_payload:
            result["quick_reply_payload"] = self.quick_reply_payload
        if self.message_id:
            result["message_id"] = self.message_id
        return result


class ChannelMessageAdapter:
    """
    Adapter for Messenger page events.
    Text messages, quick-reply taps and postback buttons are supported;
    echoes, deliveries and reads are dropped.
    """

    def __init__(self, log_util: LogUtil):
        self.log_util = log_util

    def normalize_event(self, event: MessengerEvent) -> Optional[NormalizedMessage]:
        """
        Normalize one entry[].messaging[] item.

        Returns:
            NormalizedMessage, or None for events the engine does not handle
        """
        contact_id = event.sender_id()
        if not contact_id:
            self.log_util.warning(
                service_name="ChannelMessageAdapter",
                message="Messenger event without sender id, skipping"
            )
            return None

        if event.message is not None:
            message = event.message
            # Echoes are our own outbound messages
            if message.get("is_echo"):
                return None
            text = (message.get("text") or "").strip() or None
            quick_reply = message.get("quick_reply") or {}
            normalized = NormalizedMessage(
                contact_id=contact_id,
                text=text,
                quick_reply_payload=quick_reply.get("payload") or None,
                message_id=message.get("mid")
            )
        elif event.postback is not None:
            postback = event.postback
            normalized = NormalizedMessage(
                contact_id=contact_id,
                text=(postback.get("title") or "").strip() or None,
                quick_reply_payload=postback.get("payload") or None,
                message_id=postback.get("mid")
            )
        else:
            return None

        if normalized.is_empty():
            self.log_util.info(
                service_name="ChannelMessageAdapter",
                message=f"Messenger event from {contact_id} has no text or payload, skipping"
            )
            return None
        return normalized
