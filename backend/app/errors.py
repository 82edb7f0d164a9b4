"""
errors.py — AppError hierarchy and error code registry.

Every error returned by the TripSettle API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).

Subclasses carry structured context for the settlement engine:
  SplitError               — one expense's allocation data is malformed (422)
  SettlementInvariantError — a computed snapshot broke a ledger invariant (500)
  PersistenceError         — the database read/write failed; safe to retry (503)
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def details(self) -> dict | None:
        """Structured extras for the error envelope. None means no details key."""
        return None

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        details = self.details()
        if details is not None:
            payload["details"] = details
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


class SplitError(AppError):
    """
    Raised by the split allocator when one expense cannot be allocated.

    During a recompute the orchestrator isolates these per expense unless
    strict mode is on; at expense creation they surface directly as 422.
    """

    def __init__(
            self,
            code: str,
            message: str,
            expense_id: int | None = None,
            field: str | None = None,
    ) -> None:
        super().__init__(code, message, 422, field=field)
        self.expense_id = expense_id

    def details(self) -> dict | None:
        if self.expense_id is None:
            return None
        return {"expense_id": self.expense_id}


class SettlementInvariantError(AppError):
    """Raised before persisting when the reconciled snapshot fails validation."""

    def __init__(self, trip_id: int, issues: list[str]) -> None:
        super().__init__(
            ErrorCode.SETTLEMENT_INVARIANT_VIOLATED,
            f"Settlement for trip {trip_id} failed validation; nothing was saved.",
            500,
        )
        self.trip_id = trip_id
        self.issues  = list(issues)

    def details(self) -> dict | None:
        return {"trip_id": self.trip_id, "issues": self.issues}


class PersistenceError(AppError):
    """Wraps a database failure. Never means "settlement does not exist"."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(ErrorCode.PERSISTENCE_FAILED, message, 503)
        self.original = original


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# These are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_CURRENCY           = "INVALID_CURRENCY"
    INVALID_SPLIT_KIND         = "INVALID_SPLIT_KIND"
    DUPLICATE_PARTICIPANT      = "DUPLICATE_PARTICIPANT"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    ALREADY_MEMBER             = "ALREADY_MEMBER"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    TRIP_NOT_FOUND             = "TRIP_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    TRANSFER_NOT_FOUND         = "TRANSFER_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    PARTICIPANT_NOT_MEMBER     = "PARTICIPANT_NOT_MEMBER"

    # ── Split Errors (422) ─────────────────────────────────────────────────
    SPLIT_NO_PARTICIPANTS      = "SPLIT_NO_PARTICIPANTS"
    SPLIT_NON_POSITIVE_TOTAL   = "SPLIT_NON_POSITIVE_TOTAL"
    SPLIT_INVALID_WEIGHT       = "SPLIT_INVALID_WEIGHT"
    SPLIT_INVALID_ITEM_SHARES  = "SPLIT_INVALID_ITEM_SHARES"
    SPLIT_INVALID_ITEM         = "SPLIT_INVALID_ITEM"
    ITEMIZED_TOTAL_MISMATCH    = "ITEMIZED_TOTAL_MISMATCH"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (5xx) ────────────────────────────────────────────────
    SETTLEMENT_INVARIANT_VIOLATED = "SETTLEMENT_INVARIANT_VIOLATED"  # 500
    PERSISTENCE_FAILED         = "PERSISTENCE_FAILED"     # 503
    RECOMPUTE_TIMEOUT          = "RECOMPUTE_TIMEOUT"      # 503
    INTERNAL_ERROR             = "INTERNAL_ERROR"         # 500


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # An expense with malformed allocation data was left out of the settlement.
    SPLIT_ERROR_SKIPPED = "SPLIT_ERROR_SKIPPED"

    # An expense not in the trip's base currency was left out of the settlement.
    CURRENCY_EXCLUDED = "CURRENCY_EXCLUDED"
