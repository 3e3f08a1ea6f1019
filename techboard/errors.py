"""
Errors raised by the registry and the assignment engine.

Each error carries the HTTP status the API layer answers with.
"""


class TechboardError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(TechboardError):
    status_code = 404


class ConflictError(TechboardError):
    status_code = 409


class InvalidArgumentError(TechboardError):
    status_code = 422


class InsufficientSkillError(TechboardError):
    """
    A forced assignment named a technician who cannot do the job.
    """

    status_code = 422

    def __init__(
        self,
        tech_id: str,
        required_level: str,
        actual_level: str | None,
        reason: str | None = None,
    ) -> None:
        message = (
            f"Technician does not have the required skill level "
            f"({required_level}) for this job: "
            f"{reason or f'rated {actual_level}'}"
        )
        super().__init__(message)
        self.tech_id = tech_id
        self.required_level = required_level
        self.actual_level = actual_level
        self.reason = reason
