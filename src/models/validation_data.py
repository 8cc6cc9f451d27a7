from pydantic import BaseModel, Field
from typing import Optional, List


class ValidationIssue(BaseModel):
    code: str
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None


class ValidationReport(BaseModel):
    """
    Structural check result for one graph.
    Errors make a graph unfit to run; warnings are shown to authors only.
    """
    graph_id: str
    is_valid: bool = Field(default=True, description="False when any error was found")
    start_node_id: Optional[str] = Field(default=None, description="Canonical entry node, if any")
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []
