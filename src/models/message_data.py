from typing import Optional, Dict, Any, Literal
from datetime import datetime
from pydantic import BaseModel, Field


class MessageData(BaseModel):
    """
    Message ledger entry for one inbound or dispatched outbound message.
    """
    id: Optional[str] = None  # MongoDB _id
    bot_id: str = Field(..., description="Bot the conversation belongs to")
    contact_id: str = Field(..., description="Channel-scoped contact identifier")
    direction: Literal["incoming", "outgoing"] = Field(..., description="Message direction")
    text: Optional[str] = Field(None, description="Text content, if any")
    payload: Optional[str] = Field(None, description="Quick-reply or postback payload for incoming messages")
    message_id: Optional[str] = Field(None, description="Channel message id, if known")
    action: Optional[Dict[str, Any]] = Field(None, description="Dispatched outbound action for outgoing messages")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class DeliveryFailureData(BaseModel):
    """
    Record of an action the channel refused or did not acknowledge in time.
    The batch it belonged to was aborted at this action.
    """
    id: Optional[str] = None  # MongoDB _id
    bot_id: str
    contact_id: str
    graph_id: Optional[str] = None
    node_id: Optional[str] = None
    action: Dict[str, Any] = Field(..., description="The action that failed")
    error_message: str
    aborted_count: int = Field(default=0, description="Actions after the failed one that were not sent")
    created_at: datetime = Field(default_factory=datetime.utcnow)
