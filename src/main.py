import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

# Database
from database.flow_db import FlowDB
from database.memory_db import InMemoryFlowDB

# Services
from services.process_internal_node_service import ProcessInternalNodeService
from services.flow_validation_service import FlowValidationService
from services.trigger_identification_service import TriggerIdentificationService
from services.flow_walker_service import FlowWalkerService
from services.contact_lock_service import ContactLockService
from services.channel_delivery_service import MessengerDeliveryService
from services.conversation_status_service import ConversationStatusService
from services.execution_coordinator_service import ExecutionCoordinatorService
from services.webhook_service import WebhookService
from services.delay_scheduler_service import DelaySchedulerService

# APIs
from apis.flow_api import create_flow_api
from apis.webhook_message_api import create_webhook_message_api
from apis.conversation_api import create_conversation_api

# Utils
log_util = LogUtil()
environment_utils = EnvironmentUtils(log_util=log_util)

# Database
if environment_utils.get_env_variable("USE_MEMORY_STORE"):
    flow_db = InMemoryFlowDB(log_util=log_util)
else:
    flow_db = FlowDB(log_util=log_util, environment_utils=environment_utils)

# Services
process_internal_node_service = ProcessInternalNodeService(log_util=log_util)

flow_validation_service = FlowValidationService(log_util=log_util)

trigger_identification_service = TriggerIdentificationService(
    log_util=log_util,
    flow_db=flow_db
)

flow_walker_service = FlowWalkerService(
    log_util=log_util,
    process_internal_node_service=process_internal_node_service,
    max_steps=environment_utils.get_env_variable("MAX_WALK_STEPS")
)

contact_lock_service = ContactLockService(
    log_util=log_util,
    timeout_seconds=environment_utils.get_env_variable("LOCK_TIMEOUT_SECONDS")
)

messenger_delivery_service = MessengerDeliveryService(
    log_util=log_util,
    graph_api_url=environment_utils.get_env_variable("MESSENGER_GRAPH_API_URL"),
    timeout_seconds=environment_utils.get_env_variable("DELIVERY_TIMEOUT_SECONDS")
)

conversation_status_service = ConversationStatusService(
    log_util=log_util,
    flow_db=flow_db
)

execution_coordinator_service = ExecutionCoordinatorService(
    log_util=log_util,
    flow_db=flow_db,
    trigger_identification_service=trigger_identification_service,
    flow_walker_service=flow_walker_service,
    contact_lock_service=contact_lock_service,
    channel_delivery=messenger_delivery_service,
    conversation_status_service=conversation_status_service,
    delivery_timeout_seconds=environment_utils.get_env_variable("DELIVERY_TIMEOUT_SECONDS")
)

webhook_service = WebhookService(
    log_util=log_util,
    flow_db=flow_db,
    execution_coordinator_service=execution_coordinator_service
)

delay_scheduler_service = DelaySchedulerService(
    log_util=log_util,
    execution_coordinator_service=execution_coordinator_service,
    check_interval_seconds=environment_utils.get_env_variable("DELAY_CHECK_INTERVAL_SECONDS")
)

# Define lifespan function
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await flow_db.ensure_indexes()
    log_util.info(service_name="ChatflowEngine", message="Application startup complete")

    await delay_scheduler_service.start()

    yield

    # Shutdown
    await delay_scheduler_service.stop()

    flow_db.close()
    log_util.info(service_name="ChatflowEngine", message="Application shutdown complete")

# Create FastAPI app
app = FastAPI(
    title="chatflow engine",
    description="Executes authored chatbot flows against inbound Messenger events",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Flow validation API
flow_api_router = create_flow_api(
    log_util=log_util,
    flow_validation_service=flow_validation_service
)
app.include_router(flow_api_router)

# Webhook API (Messenger page webhook and normalized inbound messages)
webhook_message_router = create_webhook_message_api(
    log_util=log_util,
    webhook_service=webhook_service
)
app.include_router(webhook_message_router)

# Conversation API (cursor inspection, restart, delay tick)
conversation_router = create_conversation_api(
    log_util=log_util,
    execution_coordinator_service=execution_coordinator_service
)
app.include_router(conversation_router)

# Health check endpoint
@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "chatflow_engine"}

# Global exception handler for HTTPExceptions
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    log_util.error(service_name="ChatflowEngine", message=f"HTTPException: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error": str(exc),
            "status_code": exc.status_code
        },
        headers={"Content-Type": "application/json"}
    )

# Global exception handler for any unhandled exceptions
@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    log_util.error(service_name="ChatflowEngine", message=f"Exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "status_code": 500
        },
        headers={"Content-Type": "application/json"}
    )

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=environment_utils.get_env_variable("HOST"),
        port=environment_utils.get_env_variable("PORT")
    )
