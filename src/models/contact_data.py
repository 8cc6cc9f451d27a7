from pydantic import BaseModel
from typing import Optional, List


class ContactData(BaseModel):
    """
    Contact attributes the engine reads; the contact ledger owns the record.
    """
    bot_id: str
    contact_id: str
    name: Optional[str] = None
    tags: List[str] = []
    is_subscribed: bool = True
