from typing import Optional

# Utils
from utils.log_utils import LogUtil

# Database
from database.base_db import BaseFlowDB

# Models
from models.message_data import MessageData
from models.outbound_action import OutboundAction


class ConversationStatusService:
    """
    Conversation ledger access: human-takeover flag and message history.
    """

    def __init__(self, log_util: LogUtil, flow_db: BaseFlowDB):
        self.log_util = log_util
        self.flow_db = flow_db

    async def is_human_takeover(self, bot_id: str, contact_id: str) -> bool:
        return await self.flow_db.is_human_takeover(bot_id, contact_id)

    async def has_message_history(self, bot_id: str, contact_id: str) -> bool:
        return await self.flow_db.has_message_history(bot_id, contact_id)

    async def record_incoming(
        self,
        bot_id: str,
        contact_id: str,
        text: Optional[str],
        payload: Optional[str] = None,
        message_id: Optional[str] = None
    ) -> Optional[MessageData]:
        saved = await self.flow_db.save_message(MessageData(
            bot_id=bot_id,
            contact_id=contact_id,
            direction="incoming",
            text=text,
            payload=payload,
            message_id=message_id
        ))
        if saved is None:
            self.log_util.warning(
                service_name="ConversationStatusService",
                message=f"Incoming message from {contact_id} was not recorded"
            )
        return saved

    async def record_outgoing(self, bot_id: str, contact_id: str, action: OutboundAction) -> Optional[MessageData]:
        return await self.flow_db.save_message(MessageData(
            bot_id=bot_id,
            contact_id=contact_id,
            direction="outgoing",
            text=getattr(action, "text", None),
            action=action.model_dump()
        ))
