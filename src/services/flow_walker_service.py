from typing import Optional, List, Dict, Callable, Tuple, Set
from datetime import datetime, timedelta

# Utils
from utils.log_utils import LogUtil
from utils.template_utils import interpolate

# Services
from services.process_internal_node_service import ProcessInternalNodeService

# Exceptions
from exceptions.flow_exception import (
    ErrorKind,
    FlowException,
    FlowValidationException,
    LoopGuardException,
)

# Models
from models.contact_data import ContactData
from models.entry_point import EntryPoint
from models.execution_cursor import ExecutionCursor
from models.flow_data import (
    FlowGraph,
    FlowNode,
    FlowEdge,
    CardConfig,
    QuickReplyButton,
)
from models.outbound_action import (
    OutboundAction,
    SendText,
    SendImage,
    SendCard,
    SendQuickReplies,
    SendTyping,
    NoOp,
    CardElement,
    CardElementButton,
    QuickReply,
)
from models.walk_result import WalkResult

GraphLookup = Callable[[str], Optional[FlowGraph]]

ELSE_HANDLES = (None, "", "else", "false")


class _Halt:
    """Where a pass stopped when it did not finish the conversation."""

    def __init__(self, graph_id: str, node_id: str, awaiting_input: bool = False,
                 awaiting_choice: bool = False, pending_resume_at: Optional[datetime] = None):
        self.graph_id = graph_id
        self.node_id = node_id
        self.awaiting_input = awaiting_input
        self.awaiting_choice = awaiting_choice
        self.pending_resume_at = pending_resume_at


class FlowWalkerService:
    """
    Interpreter for conversation graphs.

    advance() runs one pass: it starts at an entry point or resumes a paused cursor,
    executes nodes until a halt (quickReply, userInput, delay), an end, or an error,
    and returns the ordered actions plus the cursor to persist. It performs no I/O,
    so the same inputs always give the same result.
    """

    def __init__(
        self,
        log_util: LogUtil,
        process_internal_node_service: ProcessInternalNodeService,
        max_steps: int = 50
    ):
        self.log_util = log_util
        self.process_internal_node_service = process_internal_node_service
        self.max_steps = max_steps

    def advance(
        self,
        graph: FlowGraph,
        cursor: ExecutionCursor,
        inbound_text: Optional[str] = None,
        *,
        quick_reply_payload: Optional[str] = None,
        entry: Optional[EntryPoint] = None,
        contact: Optional[ContactData] = None,
        graph_lookup: Optional[GraphLookup] = None,
        now: Optional[datetime] = None
    ) -> WalkResult:
        """
        Run one pass over the graph.

        With an entry point the walk starts fresh at entry.node_id. Without one it
        resumes cursor.current_node_id, feeding it inbound_text / quick_reply_payload.
        """
        now = now or datetime.utcnow()
        bindings: Dict[str, str] = dict(cursor.bindings)
        actions: List[OutboundAction] = []
        steps = 0
        current_graph = graph

        try:
            if entry is not None:
                node_id: Optional[str] = entry.node_id
            else:
                resumed = self._resume(
                    graph=graph,
                    cursor=cursor,
                    inbound_text=inbound_text,
                    quick_reply_payload=quick_reply_payload,
                    bindings=bindings,
                    graph_lookup=graph_lookup,
                    now=now
                )
                if resumed is None:
                    return WalkResult(cursor=cursor, unchanged=True)
                if resumed == "unmatched":
                    return WalkResult(cursor=cursor, unmatched=True)
                current_graph, node_id = resumed
                steps = 1

            visited: Set[Tuple[str, str]] = set()
            while node_id is not None:
                if steps >= self.max_steps:
                    raise LoopGuardException(
                        f"Walk exceeded {self.max_steps} steps in graph {current_graph.id}"
                    )
                if (current_graph.id, node_id) in visited:
                    raise LoopGuardException(
                        f"Cycle detected: node {node_id} visited twice in graph {current_graph.id}"
                    )
                visited.add((current_graph.id, node_id))

                node = current_graph.get_node(node_id)
                if node is None:
                    raise FlowValidationException(
                        f"Node {node_id} does not exist in graph {current_graph.id}"
                    )
                steps += 1

                outcome = self._execute(node, current_graph, bindings, actions, contact, graph_lookup, now)
                if isinstance(outcome, _Halt):
                    halted = cursor.model_copy(update={
                        "graph_id": outcome.graph_id,
                        "current_node_id": outcome.node_id,
                        "awaiting_input": outcome.awaiting_input,
                        "awaiting_choice": outcome.awaiting_choice,
                        "pending_resume_at": outcome.pending_resume_at,
                        "bindings": bindings,
                        "last_activity_at": now,
                    })
                    self.log_util.info(
                        service_name="FlowWalkerService",
                        message=f"[WALK] Contact {cursor.contact_id} halted at {outcome.node_id} in graph {outcome.graph_id} after {steps} step(s)"
                    )
                    return WalkResult(actions=actions, cursor=halted, terminal=False, steps=steps)
                current_graph, node_id = outcome

            self.log_util.info(
                service_name="FlowWalkerService",
                message=f"[WALK] Contact {cursor.contact_id} finished graph {current_graph.id} after {steps} step(s)"
            )
            return WalkResult(
                actions=actions,
                cursor=self._terminal_cursor(cursor, bindings, now),
                terminal=True,
                steps=steps
            )

        except FlowException as e:
            self.log_util.error(
                service_name="FlowWalkerService",
                message=f"[WALK] Contact {cursor.contact_id} halted with {e.error_kind.value}: {e.message}"
            )
            actions.append(NoOp(reason=e.message))
            return WalkResult(
                actions=actions,
                cursor=self._terminal_cursor(cursor, bindings, now),
                terminal=True,
                error_kind=e.error_kind,
                error_message=e.message,
                steps=steps
            )

    def _terminal_cursor(self, cursor: ExecutionCursor, bindings: Dict[str, str], now: datetime) -> ExecutionCursor:
        return cursor.cleared().model_copy(update={"bindings": bindings, "last_activity_at": now})

    # Resume

    def _resume(
        self,
        graph: FlowGraph,
        cursor: ExecutionCursor,
        inbound_text: Optional[str],
        quick_reply_payload: Optional[str],
        bindings: Dict[str, str],
        graph_lookup: Optional[GraphLookup],
        now: datetime
    ):
        """
        Consume the inbound message at the paused node.
        Returns (graph, next_node_id), "unmatched", or None for a no-op.
        """
        node = graph.get_node(cursor.current_node_id)
        if node is None:
            raise FlowValidationException(
                f"Cursor points at node {cursor.current_node_id} which no longer exists in graph {graph.id}"
            )

        if node.kind == "userInput" and cursor.awaiting_input:
            value = inbound_text if inbound_text is not None else (quick_reply_payload or "")
            bindings[node.config.variable_name] = value
            self.log_util.info(
                service_name="FlowWalkerService",
                message=f"[WALK] Bound '{node.config.variable_name}' for contact {cursor.contact_id}"
            )
            return graph, self._next_node_id(graph, node)

        if node.kind == "quickReply" and cursor.awaiting_choice:
            button = self._match_button(node.config.buttons, inbound_text, quick_reply_payload)
            if button is None:
                self.log_util.info(
                    service_name="FlowWalkerService",
                    message=f"[WALK] Input did not match any button of {node.id}, falling back to triggers"
                )
                return "unmatched"
            if button.block_id:
                return self._jump(button.block_id, graph_lookup)
            edge = self._edge_for_handle(graph, node, button.id)
            return graph, edge.target_id if edge else None

        if node.kind == "delay" and cursor.pending_resume_at is not None:
            if cursor.pending_resume_at <= now or node.config.interruptible:
                return graph, self._next_node_id(graph, node)
            self.log_util.info(
                service_name="FlowWalkerService",
                message=f"[WALK] Delay {node.id} for contact {cursor.contact_id} not due until {cursor.pending_resume_at.isoformat()}"
            )
            return None

        return "unmatched"

    def _match_button(
        self,
        buttons: List[QuickReplyButton],
        inbound_text: Optional[str],
        quick_reply_payload: Optional[str]
    ) -> Optional[QuickReplyButton]:
        if quick_reply_payload:
            for button in buttons:
                if quick_reply_payload in (button.payload, button.id):
                    return button
        if inbound_text:
            text = inbound_text.strip().casefold()
            for button in buttons:
                if button.title.strip().casefold() == text:
                    return button
        return None

    # Execution

    def _execute(
        self,
        node: FlowNode,
        graph: FlowGraph,
        bindings: Dict[str, str],
        actions: List[OutboundAction],
        contact: Optional[ContactData],
        graph_lookup: Optional[GraphLookup],
        now: datetime
    ):
        """
        Run a node's effect. Returns (graph, next_node_id) to continue, with None as the
        node id when the conversation ends, or a _Halt.
        """
        kind = node.kind
        config = node.config

        if kind == "start":
            return graph, self._next_node_id(graph, node)

        if kind == "text":
            actions.append(SendText(text=interpolate(config.message, bindings)))
            return graph, self._next_node_id(graph, node)

        if kind == "image":
            actions.append(SendImage(image_url=config.image_url))
            if config.caption:
                actions.append(SendText(text=interpolate(config.caption, bindings)))
            return graph, self._next_node_id(graph, node)

        if kind == "card":
            actions.append(SendCard(elements=[self._card_element(config, bindings)]))
            return graph, self._next_node_id(graph, node)

        if kind == "gallery":
            actions.append(SendCard(elements=[self._card_element(card, bindings) for card in config.cards]))
            return graph, self._next_node_id(graph, node)

        if kind == "quickReply":
            actions.append(SendQuickReplies(
                text=interpolate(config.message, bindings),
                replies=[
                    QuickReply(title=button.title, payload=button.payload or button.id)
                    for button in config.buttons
                ]
            ))
            return _Halt(graph.id, node.id, awaiting_choice=True)

        if kind == "userInput":
            # Entered fresh: the message that led here is never bound
            if config.prompt:
                actions.append(SendText(text=interpolate(config.prompt, bindings)))
            return _Halt(graph.id, node.id, awaiting_input=True)

        if kind == "condition":
            return graph, self._condition_target(node, graph, bindings, contact)

        if kind == "delay":
            seconds = self.process_internal_node_service.delay_seconds(config)
            if seconds <= 0:
                return graph, self._next_node_id(graph, node)
            if config.show_typing:
                actions.append(SendTyping())
            return _Halt(graph.id, node.id, pending_resume_at=now + timedelta(seconds=seconds))

        if kind == "goToBlock":
            return self._jump(config.block_id, graph_lookup)

        if kind == "end":
            return graph, None

        raise FlowValidationException(f"Node {node.id} has unsupported kind '{kind}'")

    def _next_node_id(self, graph: FlowGraph, node: FlowNode) -> Optional[str]:
        edges = graph.outgoing_edges(node.id)
        if not edges:
            return None
        return edges[0].target_id

    def _edge_for_handle(self, graph: FlowGraph, node: FlowNode, handle: str) -> Optional[FlowEdge]:
        edges = graph.outgoing_edges(node.id)
        for edge in edges:
            if edge.source_handle == handle:
                return edge
        for edge in edges:
            if not edge.source_handle:
                return edge
        return None

    def _condition_target(
        self,
        node: FlowNode,
        graph: FlowGraph,
        bindings: Dict[str, str],
        contact: Optional[ContactData]
    ) -> Optional[str]:
        edges = graph.outgoing_edges(node.id)
        for predicate in node.config.predicates:
            if self.process_internal_node_service.evaluate_predicate(predicate, bindings, contact):
                edge = next((edge for edge in edges if edge.source_handle == predicate.id), None)
                if edge is None:
                    raise FlowValidationException(
                        f"Condition {node.id} has no branch for predicate {predicate.id}"
                    )
                return edge.target_id

        else_edge = next((edge for edge in edges if edge.source_handle in ELSE_HANDLES), None)
        if else_edge is None:
            self.log_util.info(
                service_name="FlowWalkerService",
                message=f"[WALK] Condition {node.id} matched nothing and has no else branch, ending"
            )
            return None
        return else_edge.target_id

    def _jump(self, block_id: str, graph_lookup: Optional[GraphLookup]) -> Tuple[FlowGraph, str]:
        target = graph_lookup(block_id) if graph_lookup else None
        if target is None:
            raise FlowValidationException(f"Block {block_id} could not be resolved")
        start = target.canonical_start()
        if start is None:
            raise FlowValidationException(f"Block {block_id} has no start node")
        return target, start.id

    def _card_element(self, card: CardConfig, bindings: Dict[str, str]) -> CardElement:
        buttons = []
        for button in card.buttons:
            if button.type == "url":
                buttons.append(CardElementButton(title=button.title, type="web_url", url=button.url))
            elif button.type == "block":
                buttons.append(CardElementButton(title=button.title, payload=button.block_id or button.id))
            else:
                buttons.append(CardElementButton(title=button.title, payload=button.payload or button.id))
        return CardElement(
            title=interpolate(card.title, bindings),
            subtitle=interpolate(card.subtitle, bindings) if card.subtitle else None,
            image_url=card.image_url,
            buttons=buttons
        )
