# backend/errors.py
"""
Error taxonomy for the CV optimizer.

Validation and store errors are handled where they occur. Gateway errors
(UpstreamError, MalformedResponse, EmptyOutput) move the pipeline to the
Error stage. Export errors are non-fatal and carry a corrective instruction
for the user.
"""


class CVOptimizerError(Exception):
    """Base class for all application errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(CVOptimizerError):
    """Uploaded file has an unsupported type or is too large."""


class GatewayError(CVOptimizerError):
    """Base class for failures of the generative AI gateway."""


class UpstreamError(GatewayError):
    """The remote model call itself failed (network, quota, auth)."""


class MalformedResponse(GatewayError):
    """The model output could not be parsed into the expected structure."""


class EmptyOutput(GatewayError):
    """The model returned no usable content."""


class StoreUnavailable(CVOptimizerError):
    """The optimization record store could not be read or written."""


class ExportError(CVOptimizerError):
    """Base class for export failures. The user stays on the completed document."""


class PrintSurfaceUnavailable(ExportError):
    """The print rendering surface could not be opened."""

    def __init__(self, message: str = ""):
        super().__init__(
            message or "Could not open the print view. Please allow pop-ups and try again."
        )


class ConversionError(ExportError):
    """HTML could not be converted into the requested format."""

    def __init__(self, message: str = ""):
        super().__init__(
            message or "There was an error generating the DOCX. Please try again or download the PDF."
        )


class InvalidTransition(CVOptimizerError):
    """The requested action is not allowed from the current pipeline stage."""


class TransitionInProgress(CVOptimizerError):
    """Another step is still running for this session."""


class PaymentRequired(CVOptimizerError):
    """The document is locked behind the paywall."""


class PaymentError(CVOptimizerError):
    """The payment collaborator refused or failed the charge."""


class NotAuthorized(CVOptimizerError):
    """The current role may not perform the requested action."""


class SessionNotFound(CVOptimizerError):
    pass


class RecordNotFound(CVOptimizerError):
    pass
