from motor.motor_asyncio import AsyncIOMotorClient
import urllib.parse
import threading
import asyncio
from typing import Optional, List, Dict, Any
from datetime import datetime
import weakref
from pydantic import ValidationError
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure, DuplicateKeyError

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

# Database
from database.base_db import BaseFlowDB

# Exceptions
from exceptions.flow_exception import FlowException, FlowDBException, CursorConflictException

# Models
from models.bot_data import BotData
from models.contact_data import ContactData
from models.execution_cursor import ExecutionCursor
from models.flow_data import FlowGraph
from models.message_data import MessageData, DeliveryFailureData

"""
Database class for chatflow engine operations
"""
class FlowDB(BaseFlowDB):
    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):

        # Initialize logger
        self.log_util = log_util

        # Initialize environment utils
        self.environment_utils = environment_utils

        # Mongo credentials
        self.username = urllib.parse.quote_plus(self.environment_utils.get_env_variable("MONGO_USERNAME"))
        self.password = urllib.parse.quote_plus(self.environment_utils.get_env_variable("MONGO_PASSWORD"))
        self.auth_source = self.environment_utils.get_env_variable("MONGO_AUTH_SOURCE")
        self.host = self.environment_utils.get_env_variable("MONGO_HOST")
        self.port = int(self.environment_utils.get_env_variable("MONGO_PORT"))
        self.db_name = self.environment_utils.get_env_variable("MONGO_DB_NAME")

        # Mongo Connection Pool Configs
        self.max_pool_size = 50
        self.min_pool_size = 0  # Create connections on-demand instead of at startup
        self.max_idle_time_ms = 30000
        self.wait_queue_timeout_ms = 10000
        self.connect_timeout_ms = 10000
        self.server_selection_timeout_ms = 10000
        self.socket_timeout_ms = 10000

        # One client per event loop: {loop_id: {client, db, collections, loop}}
        self._clients = {}

        # Thread-safe initialization lock
        self._client_lock = threading.Lock()

    def _get_client_for_current_loop(self):
        """
        Thread-safe method to get the MongoDB client and collections for the current event loop.
        Returns a dictionary with 'client', 'db', and 'collections' for the current event loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise RuntimeError("No event loop available. Database methods must be called from an async context.")

        loop_id = id(loop)

        if loop_id in self._clients:
            return self._clients[loop_id]

        with self._client_lock:
            # Double-check after acquiring lock (another thread might have created it)
            if loop_id in self._clients:
                return self._clients[loop_id]

            client = AsyncIOMotorClient(
                f"mongodb://{self.username}:{self.password}@{self.host}:{self.port}/?authSource={self.auth_source}",
                maxPoolSize=self.max_pool_size,
                minPoolSize=self.min_pool_size,
                maxIdleTimeMS=self.max_idle_time_ms,
                waitQueueTimeoutMS=self.wait_queue_timeout_ms,
                connectTimeoutMS=self.connect_timeout_ms,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                socketTimeoutMS=self.socket_timeout_ms,
                retryWrites=True,
                retryReads=True
            )
            db = client[self.db_name]

            client_data = {
                'client': client,
                'db': db,
                'collections': self._initialize_collections_for_client(db),
                'loop': weakref.ref(loop)
            }
            self._clients[loop_id] = client_data

            self.log_util.info(
                service_name="FlowDB",
                message=f"MongoDB client initialized for event loop {loop_id} (lazy initialization)"
            )

            return client_data

    def _initialize_collections_for_client(self, db):
        """
        Initialize MongoDB collections for a given database instance
        """
        return {
            'bots': db.bots,
            'graphs': db.graphs,
            'cursors': db.cursors,
            'contacts': db.contacts,
            'conversations': db.conversations,
            'messages': db.messages,
            'delivery_failures': db.delivery_failures
        }

    def close(self):
        """
        Close all MongoDB clients and cleanup resources
        """
        with self._client_lock:
            for loop_id, client_data in self._clients.items():
                try:
                    client_data['client'].close()
                except Exception as e:
                    self.log_util.warning(
                        service_name="FlowDB",
                        message=f"Error closing client for loop {loop_id}: {str(e)}"
                    )

            self._clients.clear()

            self.log_util.info(
                service_name="FlowDB",
                message="All MongoDB clients closed"
            )

    def _handle_db_operation(self, operation_name: str, error: Exception) -> None:
        """
        Handle database operation errors with appropriate logging and exception wrapping.

        Args:
            operation_name: Name of the operation that failed
            error: The exception that occurred
        """
        if isinstance(error, FlowException):
            raise error
        if isinstance(error, (NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure)):
            self.log_util.error(
                service_name="FlowDB",
                message=f"Database connection error in {operation_name}: {str(error)}"
            )
            raise FlowDBException(
                message=f"Database connection error: {str(error)}",
                status_code=503  # Service Unavailable
            )
        else:
            self.log_util.error(
                service_name="FlowDB",
                message=f"Error in {operation_name}: {str(error)}"
            )
            raise FlowDBException(
                message=f"Database error: {str(error)}",
                status_code=500
            )

    async def ensure_indexes(self) -> None:
        """
        Create the indexes the engine relies on. Safe to call on every startup.
        """
        client_data = self._get_client_for_current_loop()
        collections = client_data['collections']
        try:
            await collections['cursors'].create_index(
                [("bot_id", ASCENDING), ("contact_id", ASCENDING)], unique=True
            )
            await collections['cursors'].create_index([("pending_resume_at", ASCENDING)])
            await collections['graphs'].create_index([("bot_id", ASCENDING), ("created_at", ASCENDING)])
            await collections['contacts'].create_index(
                [("bot_id", ASCENDING), ("contact_id", ASCENDING)], unique=True
            )
            await collections['conversations'].create_index(
                [("bot_id", ASCENDING), ("contact_id", ASCENDING)], unique=True
            )
            await collections['messages'].create_index(
                [("bot_id", ASCENDING), ("contact_id", ASCENDING), ("created_at", ASCENDING)]
            )
            self.log_util.info(service_name="FlowDB", message="Indexes ensured")
        except Exception as e:
            self._handle_db_operation("ensure_indexes", e)

    # Bots and graphs
    async def get_bot(self, bot_id: str) -> Optional[BotData]:
        """
        Get a bot by ID
        """
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['bots'].find_one({"_id": bot_id})
            if result is None:
                return None
            result["id"] = str(result.pop("_id"))
            return BotData.model_validate(result)
        except Exception as e:
            self._handle_db_operation("get_bot", e)

    async def save_bot(self, bot: BotData) -> BotData:
        """
        Create or replace a bot
        """
        client_data = self._get_client_for_current_loop()
        try:
            bot_dict = bot.model_dump(exclude={"id"})
            await client_data['collections']['bots'].replace_one({"_id": bot.id}, bot_dict, upsert=True)
            return bot
        except Exception as e:
            self._handle_db_operation("save_bot", e)

    def _graph_from_document(self, document: Dict[str, Any]) -> Optional[FlowGraph]:
        document["id"] = str(document.pop("_id"))
        try:
            return FlowGraph.model_validate(document)
        except ValidationError as e:
            # One corrupt graph must not take down the whole bot
            self.log_util.error(
                service_name="FlowDB",
                message=f"Skipping graph {document.get('id')} that failed validation: {str(e)}"
            )
            return None

    async def get_graph(self, graph_id: str) -> Optional[FlowGraph]:
        """
        Get a graph by ID
        """
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['graphs'].find_one({"_id": graph_id})
            if result is None:
                return None
            return self._graph_from_document(result)
        except Exception as e:
            self._handle_db_operation("get_graph", e)

    async def save_graph(self, graph: FlowGraph) -> FlowGraph:
        """
        Create or replace a graph. Nodes are stored as an ordered list.
        """
        client_data = self._get_client_for_current_loop()
        try:
            graph_dict = graph.model_dump(exclude={"id"})
            graph_dict["nodes"] = list(graph_dict["nodes"].values())
            await client_data['collections']['graphs'].replace_one({"_id": graph.id}, graph_dict, upsert=True)
            return graph
        except Exception as e:
            self._handle_db_operation("save_graph", e)

    async def load_entry_candidates(self, bot_id: str) -> List[FlowGraph]:
        """
        Get every graph of a bot ordered by creation time
        """
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['graphs'].find({"bot_id": bot_id}).sort(
                [("created_at", ASCENDING), ("_id", ASCENDING)]
            )
            graphs: List[FlowGraph] = []
            async for graph_dict in cursor:
                graph = self._graph_from_document(graph_dict)
                if graph is not None:
                    graphs.append(graph)
            return graphs
        except Exception as e:
            self._handle_db_operation("load_entry_candidates", e)

    # Cursor store
    async def get_cursor(self, bot_id: str, contact_id: str) -> Optional[ExecutionCursor]:
        """
        Get the execution cursor of a contact
        """
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['cursors'].find_one(
                {"bot_id": bot_id, "contact_id": contact_id}
            )
            if result is None:
                return None
            result.pop("_id", None)
            return ExecutionCursor.model_validate(result)
        except Exception as e:
            self._handle_db_operation("get_cursor", e)

    async def put_cursor(self, cursor: ExecutionCursor, expected_version: Optional[int]) -> ExecutionCursor:
        """
        Compare-and-swap write of an execution cursor on its version field
        """
        client_data = self._get_client_for_current_loop()
        collection = client_data['collections']['cursors']
        try:
            if expected_version is None:
                cursor_dict = cursor.model_dump()
                cursor_dict["version"] = 1
                try:
                    await collection.insert_one(cursor_dict)
                except DuplicateKeyError:
                    raise CursorConflictException(
                        f"Cursor for bot {cursor.bot_id}, contact {cursor.contact_id} was created concurrently"
                    )
                cursor_dict.pop("_id", None)
                return ExecutionCursor.model_validate(cursor_dict)

            cursor_dict = cursor.model_dump(exclude={"bot_id", "contact_id"})
            cursor_dict["version"] = expected_version + 1
            result = await collection.find_one_and_update(
                {"bot_id": cursor.bot_id, "contact_id": cursor.contact_id, "version": expected_version},
                {"$set": cursor_dict},
                return_document=ReturnDocument.AFTER
            )
            if result is None:
                raise CursorConflictException(
                    f"Cursor for bot {cursor.bot_id}, contact {cursor.contact_id} is no longer at version {expected_version}"
                )
            result.pop("_id", None)
            return ExecutionCursor.model_validate(result)
        except Exception as e:
            self._handle_db_operation("put_cursor", e)

    async def delete_cursor(self, bot_id: str, contact_id: str) -> bool:
        """
        Delete a cursor and its bindings (explicit restart)
        """
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['cursors'].delete_one(
                {"bot_id": bot_id, "contact_id": contact_id}
            )
            return result.deleted_count > 0
        except Exception as e:
            self._handle_db_operation("delete_cursor", e)

    async def get_due_cursors(self, now: datetime) -> List[ExecutionCursor]:
        """
        Get all cursors paused at a delay whose resume time has passed
        """
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['cursors'].find({"pending_resume_at": {"$lte": now}})
            results = []
            async for doc in cursor:
                doc.pop("_id", None)
                results.append(ExecutionCursor.model_validate(doc))
            return results
        except Exception as e:
            self._handle_db_operation("get_due_cursors", e)

    # Contacts and conversation status
    async def get_contact(self, bot_id: str, contact_id: str) -> Optional[ContactData]:
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['contacts'].find_one(
                {"bot_id": bot_id, "contact_id": contact_id}
            )
            if result is None:
                return None
            result.pop("_id", None)
            return ContactData.model_validate(result)
        except Exception as e:
            self._handle_db_operation("get_contact", e)

    async def save_contact(self, contact: ContactData) -> ContactData:
        client_data = self._get_client_for_current_loop()
        try:
            await client_data['collections']['contacts'].replace_one(
                {"bot_id": contact.bot_id, "contact_id": contact.contact_id},
                contact.model_dump(),
                upsert=True
            )
            return contact
        except Exception as e:
            self._handle_db_operation("save_contact", e)

    async def is_human_takeover(self, bot_id: str, contact_id: str) -> bool:
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['conversations'].find_one(
                {"bot_id": bot_id, "contact_id": contact_id}
            )
            return bool(result and result.get("is_human_takeover"))
        except Exception as e:
            self._handle_db_operation("is_human_takeover", e)

    async def set_human_takeover(self, bot_id: str, contact_id: str, enabled: bool) -> None:
        client_data = self._get_client_for_current_loop()
        try:
            await client_data['collections']['conversations'].update_one(
                {"bot_id": bot_id, "contact_id": contact_id},
                {"$set": {"is_human_takeover": enabled, "updated_at": datetime.utcnow()}},
                upsert=True
            )
        except Exception as e:
            self._handle_db_operation("set_human_takeover", e)

    async def has_message_history(self, bot_id: str, contact_id: str) -> bool:
        client_data = self._get_client_for_current_loop()
        try:
            count = await client_data['collections']['messages'].count_documents(
                {"bot_id": bot_id, "contact_id": contact_id}, limit=1
            )
            return count > 0
        except Exception as e:
            self._handle_db_operation("has_message_history", e)

    # Ledgers
    async def save_message(self, message: MessageData) -> Optional[MessageData]:
        """
        Append a message to the conversation ledger
        """
        client_data = self._get_client_for_current_loop()
        try:
            message_dict = message.model_dump(exclude={"id"})
            result = await client_data['collections']['messages'].insert_one(message_dict)
            if result.inserted_id is None:
                self.log_util.error(service_name="FlowDB", message="Failed to save message")
                return None
            message_dict["id"] = str(result.inserted_id)
            return MessageData.model_validate(message_dict)
        except Exception as e:
            self.log_util.error(service_name="FlowDB", message=f"Error saving message: {str(e)}")
            return None

    async def save_delivery_failure(self, failure: DeliveryFailureData) -> Optional[DeliveryFailureData]:
        """
        Save a failed delivery for later inspection
        """
        client_data = self._get_client_for_current_loop()
        try:
            failure_dict = failure.model_dump(exclude={"id"})
            result = await client_data['collections']['delivery_failures'].insert_one(failure_dict)
            if result.inserted_id is None:
                self.log_util.error(service_name="FlowDB", message="Failed to save delivery failure")
                return None
            failure_dict["id"] = str(result.inserted_id)
            return DeliveryFailureData.model_validate(failure_dict)
        except Exception as e:
            self.log_util.error(service_name="FlowDB", message=f"Error saving delivery failure: {str(e)}")
            return None
