from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class BotData(BaseModel):
    id: str
    name: str = ""
    is_active: bool = True
    page_id: Optional[str] = None
    page_access_token: Optional[str] = Field(None, description="Page token for the Send API; unset means mock delivery")
    webhook_verify_token: Optional[str] = None
    default_flow_id: Optional[str] = None
