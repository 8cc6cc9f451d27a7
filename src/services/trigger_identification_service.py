from typing import Optional, List

# Utils
from utils.log_utils import LogUtil

# Database
from database.base_db import BaseFlowDB

# Models
from models.bot_data import BotData
from models.entry_point import EntryPoint
from models.flow_data import FlowGraph


def normalize_text(text: Optional[str]) -> str:
    """
    Case-folded text with runs of whitespace collapsed to one space.
    Punctuation and combining marks are kept so scripts like Thai compare intact.
    """
    if not text:
        return ""
    return " ".join(text.casefold().split())


class TriggerIdentificationService:
    """
    Service for selecting the entry point of a fresh inbound message.

    Precedence:
    1. A quick-reply or postback payload naming a known graph or node
    2. The welcome block, for a contact's first-ever message
    3. Keyword triggers of enabled blocks; exact phrase before substring match,
       earliest created block first within each class
    4. The default-answer block
    5. The bot's default flow
    """

    def __init__(
        self,
        log_util: LogUtil,
        flow_db: BaseFlowDB
    ):
        self.log_util = log_util
        self.flow_db = flow_db

    async def match(
        self,
        bot_id: str,
        message_text: Optional[str],
        quick_reply_payload: Optional[str] = None,
        is_first_contact: bool = False,
        candidates: Optional[List[FlowGraph]] = None,
        bot: Optional[BotData] = None
    ) -> Optional[EntryPoint]:
        """
        Select an entry point for a message that is not resuming a paused conversation.
        Candidates and bot are loaded from the repository when not supplied.
        """
        if candidates is None:
            candidates = await self.flow_db.load_entry_candidates(bot_id)
        if bot is None:
            bot = await self.flow_db.get_bot(bot_id)

        entry = self.select_entry(
            candidates=candidates,
            message_text=message_text,
            quick_reply_payload=quick_reply_payload,
            is_first_contact=is_first_contact,
            default_flow_id=bot.default_flow_id if bot else None
        )
        if entry:
            self.log_util.info(
                service_name="TriggerIdentificationService",
                message=f"[TRIGGER_MATCH] Bot {bot_id}: entering graph {entry.graph_id} at {entry.node_id} ({entry.reason})"
            )
        else:
            self.log_util.info(
                service_name="TriggerIdentificationService",
                message=f"[TRIGGER_MATCH] Bot {bot_id}: no entry point for text '{message_text}'"
            )
        return entry

    def select_entry(
        self,
        candidates: List[FlowGraph],
        message_text: Optional[str],
        quick_reply_payload: Optional[str] = None,
        is_first_contact: bool = False,
        default_flow_id: Optional[str] = None
    ) -> Optional[EntryPoint]:
        if quick_reply_payload:
            entry = self.match_payload(candidates, quick_reply_payload)
            if entry:
                return entry

        # Stable sort: equal timestamps keep repository order
        enabled_blocks = sorted(
            (graph for graph in candidates if graph.graph_type == "block" and graph.is_enabled),
            key=lambda graph: graph.created_at
        )

        if is_first_contact:
            for graph in enabled_blocks:
                if graph.is_welcome:
                    entry = self._entry_at_start(graph, "welcome")
                    if entry:
                        return entry

        entry = self._match_keywords(enabled_blocks, message_text)
        if entry:
            return entry

        for graph in enabled_blocks:
            if graph.is_default_answer:
                entry = self._entry_at_start(graph, "default_answer")
                if entry:
                    return entry

        return self._default_flow_entry(candidates, default_flow_id)

    def _entry_at_start(self, graph: FlowGraph, reason: str) -> Optional[EntryPoint]:
        start = graph.canonical_start()
        if start is None:
            self.log_util.warning(
                service_name="TriggerIdentificationService",
                message=f"[TRIGGER_MATCH] Graph {graph.id} has no start node, skipping"
            )
            return None
        return EntryPoint(graph_id=graph.id, node_id=start.id, reason=reason)

    def match_payload(self, candidates: List[FlowGraph], payload: str) -> Optional[EntryPoint]:
        """
        Explicit navigation: a payload naming a graph (entered at its start) or a node.
        """
        for graph in candidates:
            if graph.id == payload:
                return self._entry_at_start(graph, "payload")
        for graph in candidates:
            if graph.get_node(payload) is not None:
                return EntryPoint(graph_id=graph.id, node_id=payload, reason="payload")
        return None

    def _match_keywords(self, blocks: List[FlowGraph], message_text: Optional[str]) -> Optional[EntryPoint]:
        message = normalize_text(message_text)
        if not message:
            return None

        exact: Optional[FlowGraph] = None
        substring: Optional[FlowGraph] = None
        for graph in blocks:
            # Welcome blocks are reserved for first contact
            if graph.is_welcome or graph.canonical_start() is None:
                continue
            for keyword in graph.triggers:
                normalized_keyword = normalize_text(keyword)
                if not normalized_keyword:
                    continue
                if normalized_keyword == message:
                    exact = graph
                    break
                if substring is None and normalized_keyword in message:
                    substring = graph
            if exact:
                break

        if exact:
            return self._entry_at_start(exact, "keyword_exact")
        if substring:
            return self._entry_at_start(substring, "keyword_substring")
        return None

    def _default_flow_entry(self, candidates: List[FlowGraph], default_flow_id: Optional[str]) -> Optional[EntryPoint]:
        flows = [graph for graph in candidates if graph.graph_type == "flow" and graph.is_enabled]
        chosen = None
        if default_flow_id:
            chosen = next((graph for graph in flows if graph.id == default_flow_id), None)
        if chosen is None:
            chosen = next((graph for graph in flows if graph.is_default), None)
        if chosen is None:
            return None
        return self._entry_at_start(chosen, "default_flow")
