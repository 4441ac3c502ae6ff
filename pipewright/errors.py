"""Exception hierarchy for pipewright."""

from __future__ import annotations


class PipewrightError(Exception):
    """Base class for all pipewright errors."""


class InvalidJobData(PipewrightError, ValueError):
    """Raised when job identifiers are missing or inconsistent."""


class InvalidScheduleError(PipewrightError, ValueError):
    """Raised for an unknown schedule interval."""


class JobNotFound(PipewrightError, LookupError):
    def __init__(self, job_id: int) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class FlowNotFound(PipewrightError, LookupError):
    def __init__(self, flow_id: int | str) -> None:
        super().__init__(f"Flow {flow_id} not found")
        self.flow_id = flow_id


class JobStateError(PipewrightError):
    """Raised when a manual operation does not apply to the job's status."""


class StepTypeNotFound(PipewrightError, LookupError):
    def __init__(self, step_type: str) -> None:
        super().__init__(f"Step type '{step_type}' is not registered")
        self.step_type = step_type


class ToolRegistrationError(PipewrightError, ValueError):
    """Raised when a tool or implementation cannot be registered."""


class ToolImplementationNotFound(PipewrightError, LookupError):
    def __init__(self, class_ref: str) -> None:
        super().__init__(f"Tool implementation '{class_ref}' is not registered")
        self.class_ref = class_ref


class SessionNotFound(PipewrightError, LookupError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Chat session {session_id} not found")
        self.session_id = session_id
