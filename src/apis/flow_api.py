from fastapi import APIRouter

# Utils
from utils.log_utils import LogUtil

# Services
from services.flow_validation_service import FlowValidationService

# Models
from models.validation_data import ValidationReport

def create_flow_api(
    log_util: LogUtil,
    flow_validation_service: FlowValidationService
) -> APIRouter:
    router = APIRouter(
        prefix="/flow",
        tags=["flow"],
    )

    @router.post("/validate", response_model=ValidationReport)
    async def validate_flow(graph_data: dict) -> ValidationReport:
        """
        Structural validation of a graph document as the builder saves it.
        """
        report = flow_validation_service.validate_document(graph_data)
        if not report.is_valid:
            log_util.warning(
                service_name="FlowAPI",
                message=f"Graph {report.graph_id} failed validation with {len(report.errors)} error(s)"
            )
        return report

    return router
