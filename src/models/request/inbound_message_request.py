from typing import Optional
from pydantic import BaseModel, Field


class InboundMessageRequest(BaseModel):
    """
    Request model for an inbound message that a channel integration has already normalized.
    """
    bot_id: str = Field(..., description="Bot the message was sent to")
    contact_id: str = Field(..., description="Channel-scoped sender identifier (PSID for Messenger)")
    text: Optional[str] = Field(None, description="Message text, if any")
    quick_reply_payload: Optional[str] = Field(None, description="Quick-reply or postback payload, if any")
    message_id: Optional[str] = Field(None, description="Channel message id, recorded in the message ledger")

    class Config:
        json_schema_extra = {
            "example": {
                "bot_id": "bot_123",
                "contact_id": "2467890123456789",
                "text": "hello",
                "quick_reply_payload": None,
                "message_id": "m_AbCdEf"
            }
        }
