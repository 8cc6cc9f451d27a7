from typing import Any, Dict, List
from pydantic import ValidationError

# Utils
from utils.log_utils import LogUtil

# Models
from models.flow_data import FlowGraph, NODE_KINDS
from models.validation_data import ValidationIssue, ValidationReport


class FlowValidationService:
    """
    Structural checks for a conversation graph before it is allowed to run.
    Errors: no start node, unknown node kinds, config that does not fit its kind,
    edges pointing at missing nodes. Everything else is a warning.
    """

    def __init__(self, log_util: LogUtil):
        self.log_util = log_util

    def validate_document(self, graph_data: Dict[str, Any]) -> ValidationReport:
        """
        Validate a raw graph document as the authoring tool saves it.
        """
        graph_id = str(graph_data.get("id", ""))
        nodes = graph_data.get("nodes") or []
        if isinstance(nodes, dict):
            nodes = list(nodes.values())

        errors: List[ValidationIssue] = []
        for node in nodes:
            kind = node.get("kind", node.get("type")) if isinstance(node, dict) else None
            if kind not in NODE_KINDS:
                errors.append(ValidationIssue(
                    code="unknown_node_kind",
                    message=f"Node kind '{kind}' is not supported",
                    node_id=node.get("id") if isinstance(node, dict) else None
                ))
        if errors:
            return self._report(graph_id, errors, [], None)

        try:
            graph = FlowGraph.model_validate(graph_data)
        except ValidationError as e:
            for error in e.errors():
                errors.append(ValidationIssue(
                    code="invalid_config",
                    message=f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                ))
            return self._report(graph_id, errors, [], None)

        return self.validate(graph)

    def validate(self, graph: FlowGraph) -> ValidationReport:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        starts = graph.start_nodes()
        canonical = graph.canonical_start()
        if not starts:
            errors.append(ValidationIssue(code="missing_start", message="Graph has no start node"))
        for extra in starts[1:]:
            warnings.append(ValidationIssue(
                code="extra_start",
                message=f"Start node {extra.id} is ignored; {canonical.id} is the entry",
                node_id=extra.id
            ))

        for edge in graph.edges:
            for endpoint in (edge.source_id, edge.target_id):
                if graph.get_node(endpoint) is None:
                    errors.append(ValidationIssue(
                        code="dangling_edge",
                        message=f"Edge {edge.id} references missing node {endpoint}",
                        edge_id=edge.id
                    ))

        for node in graph.nodes.values():
            if node.kind != "start" and not graph.incoming_edges(node.id):
                warnings.append(ValidationIssue(
                    code="no_incoming_edge",
                    message=f"Node {node.id} ({node.kind}) is not reachable from any edge",
                    node_id=node.id
                ))
            if node.kind not in ("end", "goToBlock") and not graph.outgoing_edges(node.id):
                warnings.append(ValidationIssue(
                    code="no_outgoing_edge",
                    message=f"Node {node.id} ({node.kind}) has no outgoing edge",
                    node_id=node.id
                ))
            if node.kind == "goToBlock" and node.config.block_id == graph.id:
                warnings.append(ValidationIssue(
                    code="self_jump",
                    message=f"Node {node.id} jumps back into its own graph",
                    node_id=node.id
                ))

        return self._report(graph.id, errors, warnings, canonical.id if canonical else None)

    def _report(
        self,
        graph_id: str,
        errors: List[ValidationIssue],
        warnings: List[ValidationIssue],
        start_node_id
    ) -> ValidationReport:
        self.log_util.info(
            service_name="FlowValidationService",
            message=f"[VALIDATE] Graph {graph_id}: {len(errors)} error(s), {len(warnings)} warning(s)"
        )
        return ValidationReport(
            graph_id=graph_id,
            is_valid=not errors,
            start_node_id=start_node_id,
            errors=errors,
            warnings=warnings
        )
