# storefront/domain/errors.py


class StorefrontError(Exception):
    """Base for everything the storefront core raises on purpose."""

    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.user_message)
        self.message = message or self.user_message


# validation - caught before any network call, never retried

class ValidationError(StorefrontError):
    user_message = "The request is not valid."


class VoucherError(ValidationError):
    INACTIVE = "inactive"
    NOT_STARTED = "not_started"
    EXPIRED = "expired"
    MIN_ORDER_NOT_MET = "min_order_not_met"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or f"Voucher cannot be applied ({reason})")
        self.reason = reason


class EmptySelectionError(ValidationError):
    user_message = "Select at least one product to buy again."


class ActionNotAllowedError(ValidationError):
    user_message = "This action is not available for the order in its current state."


class OrchestratorBusyError(ValidationError):
    user_message = "A payment step is still in progress. Please wait."


# network

class NetworkError(StorefrontError):
    user_message = "Could not reach the store. Please try again."

    def __init__(self, message: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthExpiredError(NetworkError):
    user_message = "Your session has expired, please sign in again."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.user_message, status_code=401)


class PartialAggregationError(StorefrontError):
    """
    One page of a paginated listing failed. Recorded next to the aggregate,
    never raised out of it.
    """

    def __init__(self, page: int, cause: Exception):
        super().__init__(f"Page {page} could not be loaded: {cause}")
        self.page = page
        self.cause = cause


# multi-step payment sequence

class PaymentFlowError(StorefrontError):
    user_message = "Payment could not be started. Please try again."

    def __init__(self, step: str, message: str | None = None, cause: Exception | None = None):
        super().__init__(message)
        self.step = step
        self.cause = cause


class InconsistentOrderStateError(PaymentFlowError):
    """The payment method was assigned but a later step failed."""

    user_message = "The order was only partially updated, please check order status."
