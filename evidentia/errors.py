from __future__ import annotations


class EvidentiaError(Exception):
    """Base class for every named pipeline failure."""

    code = "evidentia_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class MissingDependency(EvidentiaError):
    """Required upstream structured output is absent; the stage refuses to run."""

    code = "missing_dependency"

    def __init__(self, stage: str, message: str | None = None) -> None:
        super().__init__(message or f"Missing upstream stage output: {stage}. Run that stage first.")
        self.stage = stage


class GenerationTimeout(EvidentiaError):
    code = "generation_timeout"

    def __init__(self, label: str, timeout_seconds: float) -> None:
        super().__init__(f"{label} request timed out after {timeout_seconds:g} seconds.")
        self.label = label
        self.timeout_seconds = timeout_seconds


class GenerationRejected(EvidentiaError):
    code = "generation_rejected"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmptyOutput(EvidentiaError):
    code = "empty_output"


class TruncatedOutput(EvidentiaError):
    """Output cap hit with partial text. Recorded as a warning, never raised past the client."""

    code = "truncated_output"


class MalformedStructured(EvidentiaError):
    code = "malformed_structured"

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class SchemaViolation(EvidentiaError):
    code = "schema_violation"
