from pydantic import BaseModel, Field
from typing import Optional, Dict
from datetime import datetime


class ExecutionCursor(BaseModel):
    """
    Persisted position of one contact's conversation with one bot.
    An empty current_node_id means no flow is active.
    """
    bot_id: str
    contact_id: str
    graph_id: str = ""
    current_node_id: str = ""
    awaiting_input: bool = False
    awaiting_choice: bool = False
    bindings: Dict[str, str] = Field(default_factory=dict)
    pending_resume_at: Optional[datetime] = None
    last_activity_at: datetime = Field(default_factory=datetime.utcnow)
    version: int = 0

    def is_active(self) -> bool:
        return bool(self.current_node_id)

    def is_paused(self) -> bool:
        return self.awaiting_input or self.awaiting_choice or self.pending_resume_at is not None

    def cleared(self) -> "ExecutionCursor":
        """Drop the position but keep bindings; they survive until an explicit restart."""
        return self.model_copy(update={
            "graph_id": "",
            "current_node_id": "",
            "awaiting_input": False,
            "awaiting_choice": False,
            "pending_resume_at": None,
            "bindings": dict(self.bindings),
        })
