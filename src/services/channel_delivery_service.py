from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
import httpx

# Utils
from utils.log_utils import LogUtil

# Exceptions
from exceptions.flow_exception import DeliveryException

# Models
from models.bot_data import BotData
from models.outbound_action import (
    OutboundAction,
    SendText,
    SendImage,
    SendCard,
    SendQuickReplies,
    SendTyping,
    NoOp,
)


class BaseChannelDelivery(ABC):
    """
    Channel send capability. send() returns on success and raises DeliveryException otherwise.
    """

    @abstractmethod
    async def send(self, bot: BotData, contact_id: str, action: OutboundAction) -> None:
        ...


class MessengerDeliveryService(BaseChannelDelivery):
    """
    Facebook Messenger Send API delivery.
    """

    def __init__(
        self,
        log_util: LogUtil,
        graph_api_url: str = "https://graph.facebook.com/v18.0",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.log_util = log_util
        self.graph_api_url = graph_api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def build_payload(self, contact_id: str, action: OutboundAction) -> Dict[str, Any]:
        """
        Send API request body for one action
        """
        recipient = {"id": contact_id}

        if isinstance(action, SendText):
            return {"recipient": recipient, "message": {"text": action.text}}

        if isinstance(action, SendImage):
            if action.image_url.startswith("data:"):
                raise DeliveryException("Messenger does not accept data: URLs for images; upload the image first")
            return {
                "recipient": recipient,
                "message": {
                    "attachment": {
                        "type": "image",
                        "payload": {"url": action.image_url, "is_reusable": True}
                    }
                }
            }

        if isinstance(action, SendCard):
            elements = []
            for element in action.elements:
                if element.image_url and element.image_url.startswith("data:"):
                    raise DeliveryException("Messenger does not accept data: URLs for card images")
                element_dict: Dict[str, Any] = {"title": element.title}
                if element.subtitle:
                    element_dict["subtitle"] = element.subtitle
                if element.image_url:
                    element_dict["image_url"] = element.image_url
                if element.buttons:
                    element_dict["buttons"] = [
                        {"type": "web_url", "title": button.title, "url": button.url}
                        if button.type == "web_url"
                        else {"type": "postback", "title": button.title, "payload": button.payload}
                        for button in element.buttons
                    ]
                elements.append(element_dict)
            return {
                "recipient": recipient,
                "message": {
                    "attachment": {
                        "type": "template",
                        "payload": {"template_type": "generic", "elements": elements}
                    }
                }
            }

        if isinstance(action, SendQuickReplies):
            return {
                "recipient": recipient,
                "message": {
                    "text": action.text,
                    "quick_replies": [
                        {"content_type": "text", "title": reply.title, "payload": reply.payload}
                        for reply in action.replies
                    ]
                }
            }

        if isinstance(action, SendTyping):
            return {"recipient": recipient, "sender_action": "typing_on"}

        raise DeliveryException(f"Unsupported action type: {getattr(action, 'type', type(action).__name__)}")

    async def send(self, bot: BotData, contact_id: str, action: OutboundAction) -> None:
        if isinstance(action, NoOp):
            return

        payload = self.build_payload(contact_id, action)

        if not bot.page_access_token:
            self.log_util.info(
                service_name="MessengerDeliveryService",
                message=f"[Mock] Sending {action.type} to {contact_id}: {payload}"
            )
            return

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(
                    f"{self.graph_api_url}/me/messages",
                    params={"access_token": bot.page_access_token},
                    json=payload,
                    headers={"Content-Type": "application/json"}
                )
        except httpx.TimeoutException:
            self.log_util.error(
                service_name="MessengerDeliveryService",
                message=f"Timeout sending {action.type} to {contact_id}"
            )
            raise DeliveryException(f"Timeout sending {action.type} to {contact_id}")
        except httpx.HTTPError as e:
            self.log_util.error(
                service_name="MessengerDeliveryService",
                message=f"Error sending {action.type} to {contact_id}: {str(e)}"
            )
            raise DeliveryException(f"Error sending {action.type}: {str(e)}")

        if response.status_code != 200:
            self.log_util.error(
                service_name="MessengerDeliveryService",
                message=f"Send API returned error: {response.status_code} - {response.text}"
            )
            raise DeliveryException(f"Send API error {response.status_code}: {response.text}")
