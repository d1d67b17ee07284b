import datetime

import pytest

from conftest import NOW, make_discussion, make_note
from mrautomator import review_state
from mrautomator.params import NoticeKind, ReminderCadence


def days_ago(days, hours=0):
    return NOW - datetime.timedelta(days=days, hours=hours)


class TestApprovalRule:
    def test_adds_approval_label_at_threshold(self, settings):
        assert review_state.apply_approval_rule(['backend'], 2, settings) == ['backend', 'double-approved']

    def test_no_change_when_already_approved(self, settings):
        assert review_state.apply_approval_rule(['double-approved'], 3, settings) is None

    def test_no_approval_label_when_already_ready(self, settings):
        assert review_state.apply_approval_rule(['ready-to-be-merged'], 2, settings) is None

    def test_removes_approval_label_below_threshold(self, settings):
        labels = ['backend', 'double-approved', 'ui']
        assert review_state.apply_approval_rule(labels, 1, settings) == ['backend', 'ui']

    def test_ready_label_survives_low_approvals(self, settings):
        assert review_state.apply_approval_rule(['ready-to-be-merged'], 0, settings) is None

    def test_below_threshold_without_labels(self, settings):
        assert review_state.apply_approval_rule(['backend'], 1, settings) is None

    def test_custom_threshold_and_label(self, settings):
        settings.update(threshold=1, approval_label='approved')
        assert review_state.apply_approval_rule([], 1, settings) == ['approved']


def test_approvers_collapses_duplicates():
    approvals = {'approved_by': [
        {'user': {'username': 'bob'}},
        {'user': {'username': 'carol'}},
        {'user': {'username': 'bob'}},
    ]}
    assert review_state.approvers(approvals) == {'bob', 'carol'}


def test_approvers_handles_missing_list():
    assert review_state.approvers({}) == set()
    assert review_state.approvers(None) == set()


def test_is_draft():
    assert review_state.is_draft(['draft', 'backend'])
    assert not review_state.is_draft(['Draft'])


@pytest.mark.parametrize('labels, expected', [
    (['double-approved'], True),
    (['ready-to-be-merged'], True),
    (['backend'], False),
    ([], False),
])
def test_needs_readiness_check(settings, labels, expected):
    assert review_state.needs_readiness_check(labels, settings) is expected


class TestOpenThreads:
    def test_unresolved_resolvable_note_is_open(self):
        assert review_state.has_open_threads([make_discussion(make_note())])

    def test_resolved_thread_is_not_open(self):
        assert not review_state.has_open_threads([make_discussion(make_note(resolved=True))])

    def test_system_note_is_ignored(self):
        assert not review_state.has_open_threads([make_discussion(make_note(system=True))])

    def test_non_resolvable_note_is_ignored(self):
        assert not review_state.has_open_threads([make_discussion(make_note(resolvable=False))])

    def test_one_open_thread_among_many(self):
        discussions = [
            make_discussion(make_note(resolved=True)),
            make_discussion(),
            make_discussion(make_note(system=True), make_note()),
        ]
        assert review_state.has_open_threads(discussions)

    def test_no_discussions(self):
        assert not review_state.has_open_threads([])


class TestLastReadyNotice:
    def test_picks_latest_bot_notice(self):
        notes = [
            make_note(author='gitlab-bot', body='this seems ready to be merged', created_at='2024-06-01T10:00:00.000Z'),
            make_note(author='gitlab-bot', body='still ready to be merged', created_at='2024-06-10T08:30:00.000Z'),
            make_note(author='gitlab-bot', body='pipeline failed', created_at='2024-06-12T08:30:00.000Z'),
        ]
        expected = datetime.datetime(2024, 6, 10, 8, 30, tzinfo=datetime.timezone.utc)
        assert review_state.last_ready_notice(notes, 'gitlab-bot') == expected

    def test_ignores_other_authors(self):
        notes = [make_note(author='alice', body='I think this is ready to be merged')]
        assert review_state.last_ready_notice(notes, 'gitlab-bot') is None

    def test_bot_match_is_exact(self):
        notes = [make_note(author='gitlab-bot-2', body='ready to be merged')]
        assert review_state.last_ready_notice(notes, 'gitlab-bot') is None

    def test_offset_timestamps(self):
        notes = [make_note(author='gitlab-bot', body='ready to be merged', created_at='2024-06-10T10:30:00.000+02:00')]
        expected = datetime.datetime(2024, 6, 10, 8, 30, tzinfo=datetime.timezone.utc)
        assert review_state.last_ready_notice(notes, 'gitlab-bot') == expected


class TestReminderCadence:
    def test_no_prior_notice(self):
        assert review_state.reminder_cadence(None, NOW) is ReminderCadence.NO_PRIOR_NOTICE

    def test_recent_notice(self):
        assert review_state.reminder_cadence(days_ago(2), NOW) is ReminderCadence.RECENT_NOTICE

    def test_stale_notice(self):
        assert review_state.reminder_cadence(days_ago(8), NOW) is ReminderCadence.STALE_NOTICE

    def test_exactly_seven_days_is_stale(self):
        assert review_state.reminder_cadence(days_ago(7), NOW) is ReminderCadence.STALE_NOTICE

    def test_partial_days_are_floored(self):
        assert review_state.reminder_cadence(days_ago(6, hours=23), NOW) is ReminderCadence.RECENT_NOTICE

    def test_future_notice_is_recent(self):
        assert review_state.reminder_cadence(days_ago(-1), NOW) is ReminderCadence.RECENT_NOTICE


def test_notice_for_each_cadence():
    assert review_state.notice_for(ReminderCadence.NO_PRIOR_NOTICE) is NoticeKind.FIRST
    assert review_state.notice_for(ReminderCadence.STALE_NOTICE) is NoticeKind.FOLLOW_UP
    assert review_state.notice_for(ReminderCadence.RECENT_NOTICE) is None


def test_notice_bodies_mention_author_and_phrase():
    first = review_state.notice_body(NoticeKind.FIRST, 'alice')
    follow_up = review_state.notice_body(NoticeKind.FOLLOW_UP, 'alice')
    assert first != follow_up
    for body in (first, follow_up):
        assert body.startswith('Hey @alice')
        assert 'ready to be merged' in body
    assert 'follow-up' in follow_up


class TestPlanReadiness:
    def test_open_threads_block_everything(self, settings):
        plan = review_state.plan_readiness(['double-approved'], True, ReminderCadence.NO_PRIOR_NOTICE, settings)
        assert plan == (None, None)

    def test_promotes_and_notifies(self, settings):
        labels, notice = review_state.plan_readiness(['ui', 'double-approved'], False,
                                                     ReminderCadence.NO_PRIOR_NOTICE, settings)
        assert labels == ['ui', 'ready-to-be-merged']
        assert notice is NoticeKind.FIRST

    def test_already_ready_recent_notice(self, settings):
        plan = review_state.plan_readiness(['ready-to-be-merged'], False, ReminderCadence.RECENT_NOTICE, settings)
        assert plan == (None, None)

    def test_already_ready_stale_notice(self, settings):
        plan = review_state.plan_readiness(['ready-to-be-merged'], False, ReminderCadence.STALE_NOTICE, settings)
        assert plan == (None, NoticeKind.FOLLOW_UP)

    def test_both_labels_collapse_to_one_ready_label(self, settings):
        labels, _ = review_state.plan_readiness(['double-approved', 'ready-to-be-merged'], False,
                                                ReminderCadence.RECENT_NOTICE, settings)
        assert labels == ['ready-to-be-merged']


def test_promote_does_not_duplicate_ready_label(settings):
    labels = ['double-approved', 'ui', 'ready-to-be-merged']
    assert review_state.promote_to_ready(labels, settings) == ['ui', 'ready-to-be-merged']
