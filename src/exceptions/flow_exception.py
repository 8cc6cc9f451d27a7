from enum import Enum


class ErrorKind(str, Enum):
    """
    Error kinds surfaced by the engine in its result values
    """
    VALIDATION = "validation_error"
    DELIVERY = "delivery_error"
    LOOP_GUARD = "loop_guard_error"
    LOCK_TIMEOUT = "lock_timeout_error"
    CURSOR_CONFLICT = "cursor_conflict"
    BOT_INACTIVE = "bot_inactive"
    INTERNAL = "internal_error"


class FlowException(Exception):
    """
    This is the base exception for all flow exceptions
    """
    error_kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, status_code: int):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message, self.status_code)

class FlowDBException(FlowException):
    """
    This is the exception for all flow database exceptions
    """
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message=self.message, status_code=self.status_code)

class FlowValidationException(FlowException):
    """
    This is the exception for corrupt or unresolvable graph data
    """
    error_kind = ErrorKind.VALIDATION

    def __init__(self, message: str):
        self.message = message
        self.status_code = 400
        super().__init__(message=self.message, status_code=self.status_code)

class DeliveryException(FlowException):
    """
    This is the exception when the channel rejects or fails to deliver an action
    """
    error_kind = ErrorKind.DELIVERY

    def __init__(self, message: str):
        self.message = message
        self.status_code = 502
        super().__init__(message=self.message, status_code=self.status_code)

class LoopGuardException(FlowException):
    """
    This is the exception when a walk revisits a node or exceeds the step bound
    """
    error_kind = ErrorKind.LOOP_GUARD

    def __init__(self, message: str):
        self.message = message
        self.status_code = 508
        super().__init__(message=self.message, status_code=self.status_code)

class LockTimeoutException(FlowException):
    """
    This is the exception when the per-contact lock cannot be acquired in time
    """
    error_kind = ErrorKind.LOCK_TIMEOUT

    def __init__(self, message: str):
        self.message = message
        self.status_code = 409
        super().__init__(message=self.message, status_code=self.status_code)

class CursorConflictException(FlowException):
    """
    This is the exception when a cursor compare-and-swap loses to another writer
    """
    error_kind = ErrorKind.CURSOR_CONFLICT

    def __init__(self, message: str):
        self.message = message
        self.status_code = 409
        super().__init__(message=self.message, status_code=self.status_code)

class BotInactiveException(FlowException):
    """
    This is the exception when an event targets an unknown or deactivated bot
    """
    error_kind = ErrorKind.BOT_INACTIVE

    def __init__(self, message: str):
        self.message = message
        self.status_code = 403
        super().__init__(message=self.message, status_code=self.status_code)
