from enum import Enum


class ReportStatus(str, Enum):
    PENDING = "pending"
    RESOLVED_PENALIZED = "resolved_penalized"
    RESOLVED_DISMISSED = "resolved_dismissed"
    EXPIRED = "expired"


class ReportAction(str, Enum):
    PENALIZE = "penalize"
    DISMISS = "dismiss"
    EXPIRE = "expire"


class CompletionMethod(str, Enum):
    MANUAL = "manual"
    PRESENCE = "presence"


class JobType(str, Enum):
    SIGNUP_ANNOUNCEMENT = "signup_announcement"
    MATCHING = "matching"
    REMINDER = "reminder"
    WEEKLY_RESET = "weekly_reset"


TERMINAL_REPORT_STATUSES = frozenset(
    {ReportStatus.RESOLVED_PENALIZED, ReportStatus.RESOLVED_DISMISSED, ReportStatus.EXPIRED}
)

_ACTION_TARGETS = {
    ReportAction.PENALIZE: ReportStatus.RESOLVED_PENALIZED,
    ReportAction.DISMISS: ReportStatus.RESOLVED_DISMISSED,
    ReportAction.EXPIRE: ReportStatus.EXPIRED,
}


def transition_report_status(current: ReportStatus | str, action: ReportAction | str) -> ReportStatus:
    current = ReportStatus(current)
    action = ReportAction(action)

    if current in TERMINAL_REPORT_STATUSES:
        return current
    return _ACTION_TARGETS[action]
