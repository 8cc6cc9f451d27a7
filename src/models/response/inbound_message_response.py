from typing import Optional
from pydantic import BaseModel, Field

# Models
from models.entry_point import EntryReason
from exceptions.flow_exception import ErrorKind


class InboundResult(BaseModel):
    """
    Result value of one inbound message or one resumed delay.
    Engine errors are reported here instead of being raised.
    """
    actions_dispatched: int = Field(default=0, description="Actions the channel accepted, in order")
    terminal: bool = Field(default=False, description="True when the conversation ended in this pass")
    error: Optional[ErrorKind] = Field(None, description="Error kind, if the pass failed")
    error_message: Optional[str] = None
    entry_reason: Optional[EntryReason] = Field(None, description="Matching rule for a fresh entry")
    human_takeover: bool = Field(default=False, description="True when a human agent owns the conversation")

    class Config:
        json_schema_extra = {
            "example": {
                "actions_dispatched": 2,
                "terminal": False,
                "error": None,
                "error_message": None,
                "entry_reason": "keyword_exact",
                "human_takeover": False
            }
        }
