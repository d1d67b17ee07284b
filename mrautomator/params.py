from enum import Enum


class MRALabels(Enum):
    DRAFT = "draft"
    APPROVAL = "double-approved"
    READY_TO_MERGE = "ready-to-be-merged"


class MRALimits(Enum):
    APPROVAL_THRESHOLD = 2
    REMINDER_INTERVAL_DAYS = 7
    PAGE_SIZE = 100


class MRAConstants(Enum):
    bot_username = "gitlab-bot"
    # every notice the bot posts contains this phrase
    ready_phrase = "ready to be merged"
    config_file = ".mr-automator.yaml"


class ReminderCadence(Enum):
    NO_PRIOR_NOTICE = "NO_PRIOR_NOTICE"
    RECENT_NOTICE = "RECENT_NOTICE"
    STALE_NOTICE = "STALE_NOTICE"


class NoticeKind(Enum):
    FIRST = "first"
    FOLLOW_UP = "reminder"


class Outcome(Enum):
    SKIPPED_DRAFT = "skipped-draft"
    UNCHANGED = "unchanged"
    APPROVED = "approved"
    APPROVAL_REMOVED = "approval-removed"
    WAITING_ON_THREADS = "waiting-on-threads"
    READY = "ready"
    FAILED = "failed"
