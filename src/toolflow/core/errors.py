"""
Error taxonomy for flow orchestration.

Configuration defects (missing registrations, wrong type assumptions) propagate
to the caller. Everything that can go wrong while a step is running is turned
into an Issue by the engine instead.
"""


class ToolflowError(Exception):
    """Base class for all toolflow errors."""


class ConfigurationError(ToolflowError):
    """A pipeline is configured in a way that makes the run impossible."""


class RegistrationError(ConfigurationError):
    """No typed output constructor is registered for a step name."""

    def __init__(self, step_name: str, registered: list[str] | None = None):
        self.step_name = step_name
        self.registered = registered or []
        message = f"No typed output registered for step '{step_name}'"
        if self.registered:
            message += f". Registered: {sorted(self.registered)}"
        super().__init__(message)


class TypeMismatchError(ConfigurationError):
    """A held output does not have the type a caller asked for."""

    def __init__(self, expected: type, actual: type, step_name: str | None = None):
        self.expected = expected
        self.actual = actual
        self.step_name = step_name
        where = f" for step '{step_name}'" if step_name else ""
        super().__init__(
            f"Expected output type {expected.__name__}{where}, "
            f"but the result holds {actual.__name__}"
        )


class CheckExecutionError(ToolflowError):
    """An audit function raised while inspecting an output."""

    def __init__(self, audit_name: str, cause: BaseException):
        self.audit_name = audit_name
        self.cause = cause
        super().__init__(f"Audit '{audit_name}' execution failed: {cause}")


class TransportError(ToolflowError):
    """A tool service could not produce a response."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidTransitionError(ToolflowError):
    """A step state machine was asked to make a transition it does not allow."""

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"No valid transition from '{from_state}' to '{to_state}'")
