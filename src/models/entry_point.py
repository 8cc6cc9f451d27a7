from pydantic import BaseModel, ConfigDict
from typing import Literal


EntryReason = Literal[
    "payload", "welcome", "keyword_exact", "keyword_substring", "default_answer", "default_flow"
]


class EntryPoint(BaseModel):
    """
    Where a fresh walk begins, and which matching rule selected it.
    """
    model_config = ConfigDict(frozen=True)

    graph_id: str
    node_id: str
    reason: EntryReason
