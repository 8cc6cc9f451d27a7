from pydantic import BaseModel
from typing import Optional, List

# Models
from models.execution_cursor import ExecutionCursor
from models.outbound_action import OutboundAction
from exceptions.flow_exception import ErrorKind


class WalkResult(BaseModel):
    """
    Outcome of one advance() pass.

    unmatched: a quick-reply resume whose input matched no button; nothing was executed.
    unchanged: a resume that left the cursor untouched (a pending delay that is not due).
    """
    actions: List[OutboundAction] = []
    cursor: ExecutionCursor
    terminal: bool = False
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    steps: int = 0
    unmatched: bool = False
    unchanged: bool = False
