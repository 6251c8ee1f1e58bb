"""Error taxonomy for the questionnaire pipeline."""


class EngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(EngineError):
    """Bad input to a create/update operation. Never retried."""


class NotFoundError(EngineError):
    """A questionnaire or answer does not exist."""


class InvalidStateTransition(EngineError):
    """A questionnaire operation is not allowed in its current state."""


class ExtractionFailure(EngineError):
    """No questions could be extracted from a questionnaire's text."""


class GenerationFailure(EngineError):
    """The answer generator produced no usable output."""


class MalformedResponseError(GenerationFailure):
    """The model response could not be parsed as a flat question -> answer mapping."""


class DataIntegrityError(EngineError):
    """A stored-data invariant was violated (e.g. duplicate hash per questionnaire)."""
