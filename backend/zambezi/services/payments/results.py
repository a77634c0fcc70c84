"""
Gateway operation results.

Gateway adapters never raise past their public methods. Each operation
returns a :class:`PaymentResult`; failures carry a :class:`PaymentError`
whose kind tells callers whether retrying can help.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional


class PaymentErrorKind(str, Enum):
    BUSINESS_RULE = "business_rule"
    PROVIDER = "provider"
    NOT_FOUND = "not_found"
    UNVERIFIED = "unverified"


class PaymentError(Exception):
    """
    Tagged payment failure.

    Attributes:
        message: Customer facing message
        detail: Underlying error text kept for debugging (provider failures)
        context: Identifiers logged with the failure
    """

    kind: ClassVar[PaymentErrorKind]
    retryable: ClassVar[bool] = False

    def __init__(self, message: str, detail: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.context = context


class BusinessRuleViolation(PaymentError):
    """The request breaks a checkout rule (currency, limits, payment state)."""

    kind = PaymentErrorKind.BUSINESS_RULE


class ProviderError(PaymentError):
    """The provider call or the local write around it failed."""

    kind = PaymentErrorKind.PROVIDER
    retryable = True


class PaymentNotFound(PaymentError):
    """No local payment correlates with the request."""

    kind = PaymentErrorKind.NOT_FOUND


class WebhookUnverified(PaymentError):
    """A webhook could not be authenticated or parsed."""

    kind = PaymentErrorKind.UNVERIFIED


@dataclass
class PaymentResult:
    """
    Outcome of a gateway operation.

    ``to_dict`` renders the JSON contract consumed by the storefront:
    ``{success, <data>..., message?, error?, error_code?, mock?}``.
    """

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None
    error: Optional[PaymentError] = None
    mock: bool = False

    @classmethod
    def ok(cls, message: Optional[str] = None, **data: Any) -> "PaymentResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def soft_fail(cls, message: str, **data: Any) -> "PaymentResult":
        """A negative answer that is not an error, e.g. an unpaid intent."""
        return cls(success=False, data=data, message=message)

    @classmethod
    def fail(cls, error: PaymentError, **data: Any) -> "PaymentResult":
        return cls(success=False, data=data, message=error.message, error=error)

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, **self.data}
        if self.message is not None:
            body["message"] = self.message
        if self.error is not None:
            body["error_code"] = self.error.kind.value
            if self.error.detail:
                body["error"] = self.error.detail
        if self.mock:
            body["mock"] = True
        return body
