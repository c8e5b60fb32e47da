import enum


class ErrorKind(str, enum.Enum):
    EMPTY_CODE = "empty_code"
    NOT_FOUND = "not_found"
    OWNER_INVALID = "owner_invalid"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    NOT_ORIGINAL_RECIPIENT = "not_original_recipient"
    SELF_REFERRAL = "self_referral"
    NOTHING_TO_PAY = "nothing_to_pay"
    NOT_PENDING = "not_pending"
    NOT_FAILED = "not_failed"
    OWNER_NOT_PAYABLE = "owner_not_payable"
    PROVIDER_TRANSFER_FAILED = "provider_transfer_failed"
    PERSISTENCE_CONFLICT = "persistence_conflict"


class AffiliateError(Exception):
    kind: ErrorKind

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)


class NothingToPay(AffiliateError):
    kind = ErrorKind.NOTHING_TO_PAY


class NotPending(AffiliateError):
    kind = ErrorKind.NOT_PENDING


class NotFailed(AffiliateError):
    kind = ErrorKind.NOT_FAILED


class OwnerNotPayable(AffiliateError):
    kind = ErrorKind.OWNER_NOT_PAYABLE


class ProviderTransferFailed(AffiliateError):
    kind = ErrorKind.PROVIDER_TRANSFER_FAILED


class PersistenceConflict(AffiliateError):
    kind = ErrorKind.PERSISTENCE_CONFLICT
