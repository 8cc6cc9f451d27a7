from abc import ABC, abstractmethod
from typing import Optional, List
from datetime import datetime

# Models
from models.bot_data import BotData
from models.contact_data import ContactData
from models.execution_cursor import ExecutionCursor
from models.flow_data import FlowGraph
from models.message_data import MessageData, DeliveryFailureData


class BaseFlowDB(ABC):
    """
    Storage interface consumed by the engine.

    Implementations:
      - FlowDB          (MongoDB via motor)
      - InMemoryFlowDB  (dicts, single process, for local runs and tests)
    """

    # Graph repository

    @abstractmethod
    async def get_bot(self, bot_id: str) -> Optional[BotData]:
        ...

    @abstractmethod
    async def save_bot(self, bot: BotData) -> BotData:
        ...

    @abstractmethod
    async def get_graph(self, graph_id: str) -> Optional[FlowGraph]:
        ...

    @abstractmethod
    async def save_graph(self, graph: FlowGraph) -> FlowGraph:
        ...

    @abstractmethod
    async def load_entry_candidates(self, bot_id: str) -> List[FlowGraph]:
        """
        All graphs of a bot that a fresh message may enter, in creation order.
        """
        ...

    # Cursor store

    @abstractmethod
    async def get_cursor(self, bot_id: str, contact_id: str) -> Optional[ExecutionCursor]:
        ...

    @abstractmethod
    async def put_cursor(self, cursor: ExecutionCursor, expected_version: Optional[int]) -> ExecutionCursor:
        """
        Compare-and-swap write. expected_version None means no cursor may exist yet.
        Returns the stored cursor with its new version; raises CursorConflictException
        when another writer got there first.
        """
        ...

    @abstractmethod
    async def delete_cursor(self, bot_id: str, contact_id: str) -> bool:
        ...

    @abstractmethod
    async def get_due_cursors(self, now: datetime) -> List[ExecutionCursor]:
        ...

    # Contacts and conversation status

    @abstractmethod
    async def get_contact(self, bot_id: str, contact_id: str) -> Optional[ContactData]:
        ...

    @abstractmethod
    async def save_contact(self, contact: ContactData) -> ContactData:
        ...

    @abstractmethod
    async def is_human_takeover(self, bot_id: str, contact_id: str) -> bool:
        ...

    @abstractmethod
    async def set_human_takeover(self, bot_id: str, contact_id: str, enabled: bool) -> None:
        ...

    @abstractmethod
    async def has_message_history(self, bot_id: str, contact_id: str) -> bool:
        ...

    @abstractmethod
    async def save_message(self, message: MessageData) -> Optional[MessageData]:
        ...

    @abstractmethod
    async def save_delivery_failure(self, failure: DeliveryFailureData) -> Optional[DeliveryFailureData]:
        ...

    async def ensure_indexes(self) -> None:
        return None

    def close(self) -> None:
        return None
