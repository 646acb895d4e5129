"""Error taxonomy for lab provisioning and remote shell sessions.

Every error carries a short machine-readable ``code`` so HTTP handlers and the
terminal gateway can report it without string matching on messages.
"""


class LabError(Exception):
    """Base class for all domain errors raised by Lab Portal services."""

    code = "lab_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidDependency(LabError):
    """One or more requested dependencies are outside the allow-set."""

    code = "invalid_dependency"

    def __init__(self, invalid: list[str]):
        self.invalid = list(invalid)
        super().__init__(f"Invalid dependencies: {', '.join(self.invalid)}")


class SchemaMismatch(LabError):
    """No logical field could be mapped onto the live table columns."""

    code = "schema_mismatch"


class LaunchFailed(LabError):
    """The compute backend failed to create or report an environment."""

    code = "launch_failed"

    def __init__(self, message: str, diagnostic: str | None = None):
        super().__init__(message)
        self.diagnostic = diagnostic


class InvalidStatusTransition(LabError):
    """A lifecycle record was asked to move along an edge that does not exist."""

    code = "invalid_status_transition"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move container from '{current}' to '{requested}'")


class Unauthorized(LabError):
    code = "unauthorized"


class InvalidToken(Unauthorized):
    code = "invalid_token"


class Forbidden(LabError):
    code = "forbidden"


class NotFound(LabError):
    code = "not_found"
