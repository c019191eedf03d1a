"""Error taxonomy shared by every stage of the watermark-removal pipeline."""


class LogoEraserError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(LogoEraserError, ValueError):
    """Malformed box, timestamp or resolution input. Never retried."""


class FormatError(ValidationError):
    """A timestamp string or value that cannot be parsed/formatted as MM:SS."""


class DetectionServiceError(LogoEraserError):
    """The detection or tracking collaborator failed (transport, body, provider)."""


class TranscodeServiceError(LogoEraserError):
    """The transcoder failed to produce an output video."""


class EmptyPlanError(LogoEraserError):
    """No region could be resolved, so there is nothing to remove."""


class AmbiguousRegionError(LogoEraserError):
    """An observation still carries several candidate regions."""


class NotFoundError(LogoEraserError):
    """An edit referenced an observation that does not exist."""


class PipelineBusyError(LogoEraserError):
    """A locate/process request arrived while another one is still in flight."""


class InvalidTransitionError(LogoEraserError):
    """The requested operation is not allowed in the current pipeline stage."""
