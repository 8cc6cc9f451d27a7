from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict


class MessengerEvent(BaseModel):
    """
    One entry[].messaging[] item of a Messenger page webhook.
    """
    model_config = ConfigDict(extra="ignore")

    sender: Dict[str, Any] = {}
    recipient: Dict[str, Any] = {}
    timestamp: Optional[int] = None
    message: Optional[Dict[str, Any]] = None
    postback: Optional[Dict[str, Any]] = None

    def sender_id(self) -> Optional[str]:
        sender_id = self.sender.get("id")
        return str(sender_id) if sender_id is not None else None


class MessengerEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    time: Optional[int] = None
    messaging: List[MessengerEvent] = []


class MessengerWebhookRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: str
    entry: List[MessengerEntry] = []
