"""
Typed results for ledger operations.

Business-rule outcomes are returned, not raised, so request handlers can
render a precise message. Infrastructure errors propagate as exceptions.
"""
from enum import Enum
from dataclasses import dataclass
from typing import Optional


class ResultCode(Enum):
    """Ledger operation result codes."""
    OK = "ok"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ALREADY_CONSUMED = "already_consumed"
    WRONG_TIER = "wrong_tier"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


# Codes a caller may retry after re-reading state
RETRYABLE_CODES = frozenset({ResultCode.CONCURRENCY_CONFLICT})


class ValidationError(ValueError):
    """Malformed input at the engine boundary (bad member id, bad threshold)."""
    pass


class DiscountKind(Enum):
    """Kind of reward discount."""
    NONE = "none"
    FREE_PRODUCT = "free_product"
    STORE_CREDIT = "store_credit"


@dataclass
class DiscountQuote:
    """Read-only discount preview."""
    amountCents: int
    kind: DiscountKind
    rewardID: Optional[int] = None

    @property
    def hasDiscount(self) -> bool:
        return self.kind is not DiscountKind.NONE and self.amountCents > 0


@dataclass
class LedgerResult:
    """Result of a reward ledger mutation."""
    code: ResultCode
    appliedCents: int = 0
    kind: DiscountKind = DiscountKind.NONE
    remainingCreditCents: Optional[int] = None
    details: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.code is ResultCode.OK

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


@dataclass
class TransferResult:
    """Result of a reward->earnings or earnings->wallet transfer."""
    code: ResultCode
    transferredCents: int = 0
    newWalletBalanceCents: Optional[int] = None
    earningsEntryID: Optional[int] = None
    details: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.code is ResultCode.OK

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


@dataclass
class PayoutEvaluation:
    """Result of an auto-payout evaluation."""
    triggered: bool
    amountCents: int = 0
    code: ResultCode = ResultCode.OK
    externalReference: Optional[str] = None
    reason: Optional[str] = None  # why nothing was triggered

    @property
    def success(self) -> bool:
        return self.code is ResultCode.OK


def validate_member_id(memberId) -> int:
    """
    Validate a member id at the engine boundary.

    Raises:
        ValidationError: If memberId is not a positive integer
    """
    if isinstance(memberId, bool) or not isinstance(memberId, int) or memberId <= 0:
        raise ValidationError(f"Invalid member id: {memberId!r}")
    return memberId
