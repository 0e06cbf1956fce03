from __future__ import annotations


class AbtError(Exception):
    pass


class ConfigValidationError(AbtError):
    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Validation errors: {', '.join(self.errors)}")


class SpawnError(AbtError):
    """The benchmark executable could not be started."""


class AbnormalExitError(AbtError):
    def __init__(self, returncode: int, stderr: str) -> None:
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"ab finished with code {returncode}: {stderr.strip()}")


class SessionBusyError(AbtError):
    """A process is already running for the session."""


class SessionNotFoundError(AbtError, KeyError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")

    def __str__(self) -> str:
        return self.args[0]


class SessionStateError(AbtError):
    pass
