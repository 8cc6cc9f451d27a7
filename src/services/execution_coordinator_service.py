import asyncio
import traceback
from typing import Optional, Dict, List, Tuple
from datetime import datetime

# Utils
from utils.log_utils import LogUtil

# Database
from database.base_db import BaseFlowDB

# Services
from services.trigger_identification_service import TriggerIdentificationService
from services.flow_walker_service import FlowWalkerService
from services.contact_lock_service import ContactLockService
from services.channel_delivery_service import BaseChannelDelivery
from services.conversation_status_service import ConversationStatusService

# Exceptions
from exceptions.flow_exception import (
    ErrorKind,
    FlowException,
    BotInactiveException,
    DeliveryException,
)

# Models
from models.bot_data import BotData
from models.entry_point import EntryPoint
from models.execution_cursor import ExecutionCursor
from models.flow_data import FlowGraph
from models.message_data import DeliveryFailureData
from models.outbound_action import NoOp
from models.walk_result import WalkResult
from models.response.inbound_message_response import InboundResult


class ExecutionCoordinatorService:
    """
    Runs the engine for one inbound message or one due delay.

    Per contact, the work is serialized through ContactLockService. Inside the lock:
    load the cursor, resume or match an entry point, walk, dispatch the actions in
    order and persist the new cursor with compare-and-swap. Every failure is turned
    into an InboundResult; nothing is raised to the caller.
    """

    def __init__(
        self,
        log_util: LogUtil,
        flow_db: BaseFlowDB,
        trigger_identification_service: TriggerIdentificationService,
        flow_walker_service: FlowWalkerService,
        contact_lock_service: ContactLockService,
        channel_delivery: BaseChannelDelivery,
        conversation_status_service: ConversationStatusService,
        delivery_timeout_seconds: float = 10.0
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.trigger_identification_service = trigger_identification_service
        self.flow_walker_service = flow_walker_service
        self.contact_lock_service = contact_lock_service
        self.channel_delivery = channel_delivery
        self.conversation_status_service = conversation_status_service
        self.delivery_timeout_seconds = delivery_timeout_seconds

    async def handle_inbound_message(
        self,
        bot_id: str,
        contact_id: str,
        text: Optional[str] = None,
        quick_reply_payload: Optional[str] = None,
        message_id: Optional[str] = None
    ) -> InboundResult:
        try:
            self.log_util.info(
                service_name="ExecutionCoordinatorService",
                message=f"[COORDINATOR] Inbound for bot {bot_id}, contact {contact_id}: text='{text}', payload='{quick_reply_payload}'"
            )

            bot = await self.flow_db.get_bot(bot_id)
            if bot is None or not bot.is_active:
                raise BotInactiveException(f"Bot {bot_id} is unknown or inactive")

            if await self.conversation_status_service.is_human_takeover(bot_id, contact_id):
                await self.conversation_status_service.record_incoming(
                    bot_id, contact_id, text, payload=quick_reply_payload, message_id=message_id
                )
                self.log_util.info(
                    service_name="ExecutionCoordinatorService",
                    message=f"[COORDINATOR] Contact {contact_id} is handled by a human agent, skipping flow"
                )
                return InboundResult(human_takeover=True)

            async with self.contact_lock_service.acquire(bot_id, contact_id):
                try:
                    return await self._process_inbound(bot, contact_id, text, quick_reply_payload, message_id)
                except FlowException:
                    raise
                except Exception as e:
                    self.log_util.error(
                        service_name="ExecutionCoordinatorService",
                        message=f"[COORDINATOR] Unexpected error for contact {contact_id}: {str(e)}\n{traceback.format_exc()}"
                    )
                    await self._abandon_cursor(bot_id, contact_id)
                    return InboundResult(terminal=True, error=ErrorKind.INTERNAL, error_message=str(e))

        except FlowException as e:
            self.log_util.error(
                service_name="ExecutionCoordinatorService",
                message=f"[COORDINATOR] {e.error_kind.value} for contact {contact_id} of bot {bot_id}: {e.message}"
            )
            return InboundResult(error=e.error_kind, error_message=e.message)

    async def _process_inbound(
        self,
        bot: BotData,
        contact_id: str,
        text: Optional[str],
        quick_reply_payload: Optional[str],
        message_id: Optional[str]
    ) -> InboundResult:
        now = datetime.utcnow()
        contact = await self.flow_db.get_contact(bot.id, contact_id)
        existing = await self.flow_db.get_cursor(bot.id, contact_id)
        expected_version = existing.version if existing else None
        is_first_contact = existing is None and not await self.conversation_status_service.has_message_history(
            bot.id, contact_id
        )
        await self.conversation_status_service.record_incoming(
            bot.id, contact_id, text, payload=quick_reply_payload, message_id=message_id
        )

        if contact is not None and not contact.is_subscribed:
            if existing is not None and existing.is_active():
                await self.flow_db.put_cursor(existing.cleared(), expected_version)
            self.log_util.info(
                service_name="ExecutionCoordinatorService",
                message=f"[COORDINATOR] Contact {contact_id} is unsubscribed, flow abandoned"
            )
            return InboundResult(terminal=True)

        candidates = await self.flow_db.load_entry_candidates(bot.id)
        graphs: Dict[str, FlowGraph] = {graph.id: graph for graph in candidates}

        walk: Optional[WalkResult] = None
        entry: Optional[EntryPoint] = None
        is_paused = existing is not None and existing.is_active() and existing.is_paused()
        if is_paused and quick_reply_payload and not existing.awaiting_choice:
            # A payload naming a block or node navigates away from a pending userInput or delay
            entry = self.trigger_identification_service.match_payload(candidates, quick_reply_payload)
            if entry is not None:
                self.log_util.info(
                    service_name="ExecutionCoordinatorService",
                    message=f"[COORDINATOR] Payload '{quick_reply_payload}' supersedes the paused node {existing.current_node_id} of contact {contact_id}"
                )

        if is_paused and entry is None:
            graph = graphs.get(existing.graph_id)
            if graph is None:
                message = f"Graph {existing.graph_id} of the active cursor could not be loaded"
                self.log_util.error(service_name="ExecutionCoordinatorService", message=f"[COORDINATOR] {message}")
                walk = WalkResult(
                    cursor=existing.cleared(),
                    terminal=True,
                    error_kind=ErrorKind.VALIDATION,
                    error_message=message
                )
            else:
                walk = self.flow_walker_service.advance(
                    graph,
                    existing,
                    text,
                    quick_reply_payload=quick_reply_payload,
                    contact=contact,
                    graph_lookup=graphs.get,
                    now=now
                )
                if walk.unmatched:
                    walk = None

        entry_reason = None
        if walk is None:
            if entry is None:
                entry = await self.trigger_identification_service.match(
                    bot.id,
                    text,
                    quick_reply_payload=quick_reply_payload,
                    is_first_contact=is_first_contact,
                    candidates=candidates,
                    bot=bot
                )
            if entry is None:
                return InboundResult()
            entry_reason = entry.reason
            base = existing.cleared() if existing else ExecutionCursor(bot_id=bot.id, contact_id=contact_id)
            walk = self.flow_walker_service.advance(
                graphs[entry.graph_id],
                base,
                text,
                quick_reply_payload=quick_reply_payload,
                entry=entry,
                contact=contact,
                graph_lookup=graphs.get,
                now=now
            )

        if walk.unchanged:
            return InboundResult(entry_reason=entry_reason)

        return await self._complete(bot, contact_id, walk, expected_version, entry_reason)

    async def _complete(
        self,
        bot: BotData,
        contact_id: str,
        walk: WalkResult,
        expected_version: Optional[int],
        entry_reason=None
    ) -> InboundResult:
        """
        Dispatch a walk's actions, then persist its cursor whatever the delivery outcome.
        """
        dispatched, delivery_error = await self._dispatch(bot, contact_id, walk)
        await self.flow_db.put_cursor(walk.cursor, expected_version)

        error = walk.error_kind
        error_message = walk.error_message
        if error is None and delivery_error is not None:
            error = delivery_error.error_kind
            error_message = delivery_error.message

        return InboundResult(
            actions_dispatched=dispatched,
            terminal=walk.terminal,
            error=error,
            error_message=error_message,
            entry_reason=entry_reason
        )

    async def _dispatch(
        self,
        bot: BotData,
        contact_id: str,
        walk: WalkResult
    ) -> Tuple[int, Optional[DeliveryException]]:
        """
        Send actions strictly in order. The first failure aborts the rest of the batch.
        """
        actions = [action for action in walk.actions if not isinstance(action, NoOp)]
        dispatched = 0
        for index, action in enumerate(actions):
            try:
                await asyncio.wait_for(
                    self.channel_delivery.send(bot, contact_id, action),
                    timeout=self.delivery_timeout_seconds
                )
            except asyncio.TimeoutError:
                error = DeliveryException(
                    f"Delivery of {action.type} timed out after {self.delivery_timeout_seconds}s"
                )
            except DeliveryException as e:
                error = e
            else:
                dispatched += 1
                await self.conversation_status_service.record_outgoing(bot.id, contact_id, action)
                continue

            aborted = len(actions) - index - 1
            self.log_util.error(
                service_name="ExecutionCoordinatorService",
                message=f"[DISPATCH] {action.type} to {contact_id} failed: {error.message}; {aborted} action(s) aborted"
            )
            await self.flow_db.save_delivery_failure(DeliveryFailureData(
                bot_id=bot.id,
                contact_id=contact_id,
                graph_id=walk.cursor.graph_id or None,
                node_id=walk.cursor.current_node_id or None,
                action=action.model_dump(),
                error_message=error.message,
                aborted_count=aborted
            ))
            return dispatched, error

        self.log_util.info(
            service_name="ExecutionCoordinatorService",
            message=f"[DISPATCH] Sent {dispatched} action(s) to {contact_id}"
        )
        return dispatched, None

    async def _abandon_cursor(self, bot_id: str, contact_id: str) -> None:
        try:
            cursor = await self.flow_db.get_cursor(bot_id, contact_id)
            if cursor is not None and cursor.is_active():
                await self.flow_db.put_cursor(cursor.cleared(), cursor.version)
        except Exception as e:
            self.log_util.error(
                service_name="ExecutionCoordinatorService",
                message=f"[COORDINATOR] Could not clear cursor of contact {contact_id}: {str(e)}"
            )

    async def tick_due_delays(self, now: Optional[datetime] = None) -> int:
        """
        Resume every cursor whose delay has elapsed. Returns how many were resumed.
        """
        now = now or datetime.utcnow()
        try:
            due: List[ExecutionCursor] = await self.flow_db.get_due_cursors(now)
        except FlowException as e:
            self.log_util.error(
                service_name="ExecutionCoordinatorService",
                message=f"[DELAY_TICK] Could not load due cursors: {e.message}"
            )
            return 0

        if not due:
            return 0

        self.log_util.info(
            service_name="ExecutionCoordinatorService",
            message=f"[DELAY_TICK] Found {len(due)} due delay(s)"
        )
        resumed = await asyncio.gather(*(self._resume_due(cursor, now) for cursor in due))
        return sum(1 for result in resumed if result)

    async def _resume_due(self, scheduled: ExecutionCursor, now: datetime) -> bool:
        bot_id = scheduled.bot_id
        contact_id = scheduled.contact_id
        try:
            async with self.contact_lock_service.acquire(bot_id, contact_id):
                current = await self.flow_db.get_cursor(bot_id, contact_id)
                # Compare-and-resume: a message processed since the scan supersedes this delay
                if (
                    current is None
                    or current.version != scheduled.version
                    or current.current_node_id != scheduled.current_node_id
                    or current.pending_resume_at != scheduled.pending_resume_at
                ):
                    self.log_util.info(
                        service_name="ExecutionCoordinatorService",
                        message=f"[DELAY_TICK] Delay of contact {contact_id} was superseded, skipping"
                    )
                    return False

                bot = await self.flow_db.get_bot(bot_id)
                if bot is None or not bot.is_active:
                    await self.flow_db.put_cursor(current.cleared(), current.version)
                    self.log_util.info(
                        service_name="ExecutionCoordinatorService",
                        message=f"[DELAY_TICK] Bot {bot_id} is inactive, delay of contact {contact_id} abandoned"
                    )
                    return False

                contact = await self.flow_db.get_contact(bot_id, contact_id)
                if contact is not None and not contact.is_subscribed:
                    await self.flow_db.put_cursor(current.cleared(), current.version)
                    return False

                candidates = await self.flow_db.load_entry_candidates(bot_id)
                graphs = {graph.id: graph for graph in candidates}
                graph = graphs.get(current.graph_id)
                if graph is None:
                    self.log_util.error(
                        service_name="ExecutionCoordinatorService",
                        message=f"[DELAY_TICK] Graph {current.graph_id} could not be loaded, delay abandoned"
                    )
                    await self.flow_db.put_cursor(current.cleared(), current.version)
                    return False

                walk = self.flow_walker_service.advance(
                    graph,
                    current,
                    None,
                    contact=contact,
                    graph_lookup=graphs.get,
                    now=now
                )
                if walk.unchanged:
                    return False

                await self._complete(bot, contact_id, walk, current.version)
                return True

        except FlowException as e:
            self.log_util.error(
                service_name="ExecutionCoordinatorService",
                message=f"[DELAY_TICK] {e.error_kind.value} resuming contact {contact_id}: {e.message}"
            )
            return False
        except Exception as e:
            self.log_util.error(
                service_name="ExecutionCoordinatorService",
                message=f"[DELAY_TICK] Unexpected error resuming contact {contact_id}: {str(e)}\n{traceback.format_exc()}"
            )
            await self._abandon_cursor(bot_id, contact_id)
            return False

    async def get_cursor(self, bot_id: str, contact_id: str) -> Optional[ExecutionCursor]:
        return await self.flow_db.get_cursor(bot_id, contact_id)

    async def restart_conversation(self, bot_id: str, contact_id: str) -> bool:
        """
        Explicit restart: drop the cursor together with its bindings.
        """
        async with self.contact_lock_service.acquire(bot_id, contact_id):
            deleted = await self.flow_db.delete_cursor(bot_id, contact_id)
        self.log_util.info(
            service_name="ExecutionCoordinatorService",
            message=f"[COORDINATOR] Conversation of contact {contact_id} with bot {bot_id} restarted (cursor existed: {deleted})"
        )
        return deleted
