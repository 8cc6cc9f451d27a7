from pydantic import BaseModel, Field, Discriminator, ConfigDict, AliasChoices, field_validator, model_validator
from typing import Optional, List, Dict, Any, Union, Literal, Annotated
from datetime import datetime

# Node configs

class NodeConfig(BaseModel):
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    label: Optional[str] = None

class StartConfig(NodeConfig):
    pass

class TextConfig(NodeConfig):
    message: str

class ImageConfig(NodeConfig):
    image_url: str = Field(..., validation_alias=AliasChoices("image_url", "imageUrl"))
    caption: Optional[str] = None

class CardButton(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    type: Literal["postback", "url", "block"] = "postback"
    payload: Optional[str] = None
    url: Optional[str] = None
    block_id: Optional[str] = Field(None, validation_alias=AliasChoices("block_id", "blockId"))

class CardConfig(NodeConfig):
    title: str
    subtitle: Optional[str] = None
    image_url: Optional[str] = Field(None, validation_alias=AliasChoices("image_url", "imageUrl"))
    buttons: List[CardButton] = []

class GalleryConfig(NodeConfig):
    cards: List[CardConfig] = Field(..., min_length=1)

class QuickReplyButton(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    payload: Optional[str] = None
    block_id: Optional[str] = Field(None, validation_alias=AliasChoices("block_id", "blockId"))

class QuickReplyConfig(NodeConfig):
    message: str
    buttons: List[QuickReplyButton] = Field(..., min_length=1)

class UserInputConfig(NodeConfig):
    prompt: Optional[str] = None
    variable_name: str = Field(..., min_length=1, validation_alias=AliasChoices("variable_name", "variableName"))

class Predicate(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    source: Literal["variable", "tag", "subscription"] = "variable"
    variable: Optional[str] = None
    operator: Literal[
        "equals", "notEquals", "contains", "notContains", "startsWith",
        "endsWith", "greaterThan", "lessThan", "isSet", "isNotSet"
    ]
    value: Optional[str] = ""

class ConditionConfig(NodeConfig):
    predicates: List[Predicate] = []

    @model_validator(mode="before")
    @classmethod
    def _legacy_single_predicate(cls, data: Any) -> Any:
        # Older graphs store one variable/operator/value triple routed through the "true" handle
        if isinstance(data, dict) and not data.get("predicates") and data.get("variable"):
            data = dict(data)
            data["predicates"] = [{
                "id": "true",
                "source": "variable",
                "variable": data.get("variable"),
                "operator": data.get("operator", "equals"),
                "value": data.get("value", ""),
            }]
        return data

class DelayConfig(NodeConfig):
    duration: int = Field(0, validation_alias=AliasChoices("duration", "seconds", "delayDuration"))
    unit: Literal["seconds", "minutes", "hours", "days"] = Field("seconds", validation_alias=AliasChoices("unit", "delayUnit"))
    show_typing: bool = Field(False, validation_alias=AliasChoices("show_typing", "showTyping"))
    interruptible: bool = Field(False, validation_alias=AliasChoices("interruptible", "delayInterrupt"))

class GoToBlockConfig(NodeConfig):
    block_id: str = Field(..., min_length=1, validation_alias=AliasChoices("block_id", "blockId"))

class EndConfig(NodeConfig):
    pass

# Base FlowNode with common fields
class BaseFlowNode(BaseModel):
    model_config = ConfigDict(extra='ignore', frozen=True)

    id: str

class StartNode(BaseFlowNode):
    kind: Literal["start"]
    config: StartConfig = Field(default_factory=StartConfig)

class TextNode(BaseFlowNode):
    kind: Literal["text"]
    config: TextConfig

class ImageNode(BaseFlowNode):
    kind: Literal["image"]
    config: ImageConfig

class CardNode(BaseFlowNode):
    kind: Literal["card"]
    config: CardConfig

class GalleryNode(BaseFlowNode):
    kind: Literal["gallery"]
    config: GalleryConfig

class QuickReplyNode(BaseFlowNode):
    kind: Literal["quickReply"]
    config: QuickReplyConfig

class UserInputNode(BaseFlowNode):
    kind: Literal["userInput"]
    config: UserInputConfig

class ConditionNode(BaseFlowNode):
    kind: Literal["condition"]
    config: ConditionConfig

class DelayNode(BaseFlowNode):
    kind: Literal["delay"]
    config: DelayConfig

class GoToBlockNode(BaseFlowNode):
    kind: Literal["goToBlock"]
    config: GoToBlockConfig

class EndNode(BaseFlowNode):
    kind: Literal["end"]
    config: EndConfig = Field(default_factory=EndConfig)

# Union of all node kinds with discriminator
FlowNode = Annotated[
    Union[
        StartNode,
        TextNode,
        ImageNode,
        CardNode,
        GalleryNode,
        QuickReplyNode,
        UserInputNode,
        ConditionNode,
        DelayNode,
        GoToBlockNode,
        EndNode
    ],
    Discriminator("kind")
]

NODE_KINDS = (
    "start", "text", "image", "card", "gallery", "quickReply",
    "userInput", "condition", "delay", "goToBlock", "end"
)

def _normalize_node(node: Any) -> Any:
    # The flow builder saves {id, type, position, data}; map it onto {id, kind, config}
    if isinstance(node, dict) and "kind" not in node and "type" in node:
        return {"id": node.get("id"), "kind": node.get("type"), "config": node.get("data") or {}}
    return node

class FlowEdge(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    source_id: str = Field(..., validation_alias=AliasChoices("source_id", "sourceId", "source"))
    target_id: str = Field(..., validation_alias=AliasChoices("target_id", "targetId", "target"))
    source_handle: Optional[str] = Field(None, validation_alias=AliasChoices("source_handle", "sourceHandle"))
    target_handle: Optional[str] = Field(None, validation_alias=AliasChoices("target_handle", "targetHandle"))

class FlowGraph(BaseModel):
    """
    Validated, read-only conversation graph: a bot-wide flow or a triggered block.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    bot_id: str
    name: str = ""
    graph_type: Literal["flow", "block"] = "block"
    nodes: Dict[str, FlowNode] = {}
    edges: List[FlowEdge] = []
    triggers: List[str] = []
    is_enabled: bool = True
    is_welcome: bool = False
    is_default_answer: bool = False
    is_default: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("nodes", mode="before")
    @classmethod
    def _nodes_by_id(cls, value: Any) -> Any:
        # Authoring tools store nodes as an ordered list; keep that order in the mapping
        if isinstance(value, list):
            return {
                node.get("id") if isinstance(node, dict) else node.id: _normalize_node(node)
                for node in value
            }
        if isinstance(value, dict):
            return {node_id: _normalize_node(node) for node_id, node in value.items()}
        return value

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        return self.nodes.get(node_id)

    def start_nodes(self) -> List[FlowNode]:
        return [node for node in self.nodes.values() if node.kind == "start"]

    def canonical_start(self) -> Optional[FlowNode]:
        """First start node in authoring order; any others are ignored."""
        starts = self.start_nodes()
        return starts[0] if starts else None

    def outgoing_edges(self, node_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges if edge.source_id == node_id]

    def incoming_edges(self, node_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges if edge.target_id == node_id]
