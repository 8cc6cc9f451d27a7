"""
In-memory FlowDB for local development and tests.
All data is lost on process restart.
"""
import uuid
from typing import Optional, List, Dict, Tuple
from datetime import datetime

# Utils
from utils.log_utils import LogUtil

# Database
from database.base_db import BaseFlowDB

# Exceptions
from exceptions.flow_exception import CursorConflictException

# Models
from models.bot_data import BotData
from models.contact_data import ContactData
from models.execution_cursor import ExecutionCursor
from models.flow_data import FlowGraph
from models.message_data import MessageData, DeliveryFailureData


class InMemoryFlowDB(BaseFlowDB):
    """
    Dict-backed store with the same interface as FlowDB.
    Every method runs without awaiting, so each call is atomic on one event loop.
    """

    def __init__(self, log_util: LogUtil):
        self.log_util = log_util
        self._bots: Dict[str, BotData] = {}
        self._graphs: Dict[str, FlowGraph] = {}
        self._cursors: Dict[Tuple[str, str], ExecutionCursor] = {}
        self._contacts: Dict[Tuple[str, str], ContactData] = {}
        self._takeover: Dict[Tuple[str, str], bool] = {}
        self.messages: List[MessageData] = []
        self.delivery_failures: List[DeliveryFailureData] = []
        self.log_util.info(service_name="InMemoryFlowDB", message="In-memory store initialized")

    async def get_bot(self, bot_id: str) -> Optional[BotData]:
        return self._bots.get(bot_id)

    async def save_bot(self, bot: BotData) -> BotData:
        self._bots[bot.id] = bot
        return bot

    async def get_graph(self, graph_id: str) -> Optional[FlowGraph]:
        return self._graphs.get(graph_id)

    async def save_graph(self, graph: FlowGraph) -> FlowGraph:
        self._graphs[graph.id] = graph
        return graph

    async def load_entry_candidates(self, bot_id: str) -> List[FlowGraph]:
        graphs = [graph for graph in self._graphs.values() if graph.bot_id == bot_id]
        # sorted() is stable, so equal timestamps keep insertion order
        return sorted(graphs, key=lambda graph: graph.created_at)

    async def get_cursor(self, bot_id: str, contact_id: str) -> Optional[ExecutionCursor]:
        cursor = self._cursors.get((bot_id, contact_id))
        return cursor.model_copy(deep=True) if cursor else None

    async def put_cursor(self, cursor: ExecutionCursor, expected_version: Optional[int]) -> ExecutionCursor:
        key = (cursor.bot_id, cursor.contact_id)
        current = self._cursors.get(key)
        if expected_version is None and current is not None:
            raise CursorConflictException(f"Cursor for {key} was created concurrently")
        if expected_version is not None and (current is None or current.version != expected_version):
            raise CursorConflictException(
                f"Cursor for {key} is at version {current.version if current else None}, expected {expected_version}"
            )
        next_version = 1 if expected_version is None else expected_version + 1
        stored = cursor.model_copy(update={"version": next_version}, deep=True)
        self._cursors[key] = stored
        return stored.model_copy(deep=True)

    async def delete_cursor(self, bot_id: str, contact_id: str) -> bool:
        return self._cursors.pop((bot_id, contact_id), None) is not None

    async def get_due_cursors(self, now: datetime) -> List[ExecutionCursor]:
        return [
            cursor.model_copy(deep=True)
            for cursor in self._cursors.values()
            if cursor.pending_resume_at is not None and cursor.pending_resume_at <= now
        ]

    async def get_contact(self, bot_id: str, contact_id: str) -> Optional[ContactData]:
        return self._contacts.get((bot_id, contact_id))

    async def save_contact(self, contact: ContactData) -> ContactData:
        self._contacts[(contact.bot_id, contact.contact_id)] = contact
        return contact

    async def is_human_takeover(self, bot_id: str, contact_id: str) -> bool:
        return self._takeover.get((bot_id, contact_id), False)

    async def set_human_takeover(self, bot_id: str, contact_id: str, enabled: bool) -> None:
        self._takeover[(bot_id, contact_id)] = enabled

    async def has_message_history(self, bot_id: str, contact_id: str) -> bool:
        return any(m.bot_id == bot_id and m.contact_id == contact_id for m in self.messages)

    async def save_message(self, message: MessageData) -> Optional[MessageData]:
        saved = message.model_copy(update={"id": uuid.uuid4().hex[:16]})
        self.messages.append(saved)
        return saved

    async def save_delivery_failure(self, failure: DeliveryFailureData) -> Optional[DeliveryFailureData]:
        saved = failure.model_copy(update={"id": uuid.uuid4().hex[:16]})
        self.delivery_failures.append(saved)
        return saved
