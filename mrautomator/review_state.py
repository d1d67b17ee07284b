"""
Review state rules for merge requests.

Everything in here is a pure function over data already fetched from GitLab:
label lists, approval payloads, discussions and notes. The automator module
does the fetching and writing and asks these functions what to do.

``settings`` is the dict returned by config_loader.get_label_settings():
``threshold``, ``approval_label``, ``ready_label`` and ``bot_username``.
"""

import datetime

from .params import MRALabels, MRALimits, MRAConstants, ReminderCadence, NoticeKind

FIRST_NOTICE = ("Hey @{author} 👋 Just a friendly reminder that this merge request seems ready to be merged! "
                "All approvals are in place and there are no open discussions. 🚀")

FOLLOW_UP_NOTICE = ("Hey @{author} 👋 This is a friendly follow-up reminder! "
                    "This merge request still seems ready to be merged. "
                    "All approvals are in place and there are no open discussions. "
                    "Don't hesitate if you need any help! 🚀")


def is_draft(labels):
    return MRALabels.DRAFT.value in labels


def approvers(approvals):
    """Usernames of everyone who approved, duplicates collapsed."""
    if not approvals:
        return set()
    return {entry['user']['username'] for entry in approvals.get('approved_by') or []}


def apply_approval_rule(labels, approval_count, settings):
    """
    Add or drop the approval label based on the approval count.

    Returns the new label list, or None when nothing changes. The ready label
    is never removed here, even when approvals drop below the threshold.
    """
    approval_label = settings['approval_label']
    ready_label = settings['ready_label']

    if approval_count >= settings['threshold']:
        if approval_label not in labels and ready_label not in labels:
            return list(labels) + [approval_label]
        return None

    if approval_label in labels:
        return [label for label in labels if label != approval_label]
    return None


def needs_readiness_check(labels, settings):
    return settings['approval_label'] in labels or settings['ready_label'] in labels


def is_open_note(note):
    return (note.get('system') is False
            and note.get('resolvable') is True
            and note.get('resolved') is False)


def has_open_threads(discussions):
    """True if any thread holds a non-system, resolvable, unresolved note."""
    return any(is_open_note(note)
               for discussion in discussions
               for note in discussion.get('notes') or [])


def parse_timestamp(value):
    """GitLab ISO 8601 timestamp to an aware UTC datetime."""
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def is_ready_notice(note, bot_username):
    author = note.get('author') or {}
    return (author.get('username') == bot_username
            and MRAConstants.ready_phrase.value in (note.get('body') or ''))


def last_ready_notice(notes, bot_username):
    """Timestamp of the bot's latest "ready to be merged" note, or None."""
    stamps = [parse_timestamp(note['created_at'])
              for note in notes
              if is_ready_notice(note, bot_username) and note.get('created_at')]
    return max(stamps) if stamps else None


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


def reminder_cadence(last_notice_at, now=None,
                     interval_days=MRALimits.REMINDER_INTERVAL_DAYS.value):
    if last_notice_at is None:
        return ReminderCadence.NO_PRIOR_NOTICE

    now = utcnow() if now is None else now
    # whole days only: 6 days 23 hours is still recent
    elapsed_days = int((now - last_notice_at).total_seconds() // 86400)
    if elapsed_days >= interval_days:
        return ReminderCadence.STALE_NOTICE
    return ReminderCadence.RECENT_NOTICE


def notice_for(cadence):
    if cadence is ReminderCadence.NO_PRIOR_NOTICE:
        return NoticeKind.FIRST
    if cadence is ReminderCadence.STALE_NOTICE:
        return NoticeKind.FOLLOW_UP
    return None


def notice_body(kind, author_username):
    template = FOLLOW_UP_NOTICE if kind is NoticeKind.FOLLOW_UP else FIRST_NOTICE
    return template.format(author=author_username)


def promote_to_ready(labels, settings):
    """Swap the approval label for the ready label; None if not approved."""
    approval_label = settings['approval_label']
    if approval_label not in labels:
        return None
    ready_label = settings['ready_label']
    labels = [label for label in labels if label != approval_label]
    if ready_label not in labels:
        labels.append(ready_label)
    return labels


def plan_readiness(labels, open_threads, cadence, settings):
    """
    Decide the readiness step for an approved merge request.

    Returns:
        tuple: (new labels or None, NoticeKind or None)
    """
    if open_threads:
        return None, None
    return promote_to_ready(labels, settings), notice_for(cadence)
