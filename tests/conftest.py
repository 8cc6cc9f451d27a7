"""Shared test fixtures for the chatflow engine."""
from datetime import datetime, timedelta

import pytest

from utils.log_utils import LogUtil
from database.memory_db import InMemoryFlowDB
from services.contact_lock_service import ContactLockService
from services.conversation_status_service import ConversationStatusService
from services.execution_coordinator_service import ExecutionCoordinatorService
from services.flow_walker_service import FlowWalkerService
from services.process_internal_node_service import ProcessInternalNodeService
from services.trigger_identification_service import TriggerIdentificationService

from flow_fixtures import RecordingDelivery


@pytest.fixture
def log_util() -> LogUtil:
    return LogUtil()


@pytest.fixture
def flow_db(log_util) -> InMemoryFlowDB:
    return InMemoryFlowDB(log_util=log_util)


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def walker(log_util) -> FlowWalkerService:
    return FlowWalkerService(
        log_util=log_util,
        process_internal_node_service=ProcessInternalNodeService(log_util=log_util),
        max_steps=50
    )


@pytest.fixture
def coordinator(log_util, flow_db, delivery, walker) -> ExecutionCoordinatorService:
    return ExecutionCoordinatorService(
        log_util=log_util,
        flow_db=flow_db,
        trigger_identification_service=TriggerIdentificationService(log_util=log_util, flow_db=flow_db),
        flow_walker_service=walker,
        contact_lock_service=ContactLockService(log_util=log_util, timeout_seconds=2.0),
        channel_delivery=delivery,
        conversation_status_service=ConversationStatusService(log_util=log_util, flow_db=flow_db),
        delivery_timeout_seconds=0.5
    )


@pytest.fixture
def later():
    """Datetime factory relative to the real clock, for cursors the coordinator stamps with utcnow()."""
    def _later(seconds: float) -> datetime:
        return datetime.utcnow() + timedelta(seconds=seconds)
    return _later
