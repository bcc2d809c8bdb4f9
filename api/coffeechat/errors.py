from enum import Enum


class RejectionKind(str, Enum):
    NOT_NOW = "not_now"
    NOT_ALLOWED = "not_allowed"
    INVALID = "invalid"
    ALREADY_DONE = "already_done"


class RejectedOperation(Exception):
    """A member or admin operation that was refused with a readable reason.

    `kind` lets the HTTP layer tell "not allowed right now" apart from
    "not allowed for you" and "already done".
    """

    def __init__(self, kind: RejectionKind, detail: str):
        super().__init__(detail)
        self.kind = kind
        self.detail = detail


def not_now(detail: str) -> RejectedOperation:
    return RejectedOperation(RejectionKind.NOT_NOW, detail)


def not_allowed(detail: str) -> RejectedOperation:
    return RejectedOperation(RejectionKind.NOT_ALLOWED, detail)


def invalid(detail: str) -> RejectedOperation:
    return RejectedOperation(RejectionKind.INVALID, detail)


def already_done(detail: str) -> RejectedOperation:
    return RejectedOperation(RejectionKind.ALREADY_DONE, detail)
