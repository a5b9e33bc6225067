"""AppraisalStudio error types.

Routes translate these into HTTP responses. Messages are safe to show to
the caller; full detail belongs in the server log only.

Running out of quota is not an error: the usage tracker and generation
pipeline return a rejected outcome with needs_upgrade=True instead.
"""


class AppraisalStudioError(Exception):
    """Base class for expected, caller-visible failures."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(AppraisalStudioError):
    """Missing or malformed input, raised before any I/O."""

    status_code = 400


class AccountNotFound(AppraisalStudioError):
    status_code = 404


class GenerationNotFound(AppraisalStudioError):
    status_code = 404


class NotOwner(AppraisalStudioError):
    """The caller's account does not own the target record."""

    status_code = 403


class BillingNotConfigured(AppraisalStudioError):
    """Plan has no price mapping, or the account has no Stripe customer yet."""

    status_code = 400


class ExternalServiceError(AppraisalStudioError):
    """Stripe, the document store or the content model failed. Retryable."""

    status_code = 502
