from fastapi import APIRouter
from fastapi.exceptions import HTTPException

# Utils
from utils.log_utils import LogUtil

# Services
from services.execution_coordinator_service import ExecutionCoordinatorService

# Exceptions
from exceptions.flow_exception import FlowException

def create_conversation_api(
    log_util: LogUtil,
    execution_coordinator_service: ExecutionCoordinatorService
) -> APIRouter:
    router = APIRouter(
        prefix="/conversation",
        tags=["conversation"],
    )

    @router.post("/delays/tick")
    async def tick_due_delays():
        processed = await execution_coordinator_service.tick_due_delays()
        return {"processed": processed}

    @router.get("/{bot_id}/{contact_id}/cursor")
    async def get_cursor(bot_id: str, contact_id: str):
        try:
            cursor = await execution_coordinator_service.get_cursor(bot_id, contact_id)
        except FlowException as e:
            log_util.error(service_name="ConversationAPI", message=f"Error getting cursor: {e.message}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        if cursor is None:
            raise HTTPException(status_code=404, detail="No cursor for this contact")
        return cursor

    @router.delete("/{bot_id}/{contact_id}/cursor")
    async def restart_conversation(bot_id: str, contact_id: str):
        """
        Explicit restart: the cursor and its captured bindings are removed.
        """
        try:
            deleted = await execution_coordinator_service.restart_conversation(bot_id, contact_id)
        except FlowException as e:
            log_util.error(service_name="ConversationAPI", message=f"Error restarting conversation: {e.message}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        return {"restarted": deleted}

    return router
