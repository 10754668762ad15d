from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for every failure that aborts a run."""


class SpawnError(PipelineError):
    pass


class StepFailedError(PipelineError):
    def __init__(self, message: str, code: int) -> None:
        super().__init__(message)
        self.code = code


class VerificationError(PipelineError):
    """A step reported success but its expected output is missing."""


class RunCancelledError(PipelineError):
    pass


class PublicationError(PipelineError):
    pass
