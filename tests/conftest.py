import datetime
import logging

import pytest

from mrautomator.gitlab import GitLabNotFound

NOW = datetime.datetime(2024, 6, 15, 12, 0, 0, tzinfo=datetime.timezone.utc)

SETTINGS = {
    'threshold': 2,
    'approval_label': 'double-approved',
    'ready_label': 'ready-to-be-merged',
    'bot_username': 'gitlab-bot',
}


class FakeGitLab:
    """
    In-memory stand-in for mrautomator.gitlab.GitLab.

    Writes are recorded in ``calls`` and applied to the stored merge requests
    so a second run sees the first run's labels and notes.
    """

    def __init__(self, merge_requests=(), approvals=None, discussions=None, notes=None, errors=None):
        self.merge_requests = {(mr['project_id'], mr['iid']): mr for mr in merge_requests}
        self.approvals = approvals or {}
        self.discussions = discussions or {}
        self.notes = notes or {}
        self.errors = errors or {}
        self.calls = []
        self.reads = []

    def _maybe_fail(self, name, key):
        error = self.errors.get((name, key))
        if error is not None:
            raise error

    def list_group_merge_requests(self, group_id):
        self.reads.append(('list_group_merge_requests', group_id))
        return [dict(mr) for mr in self.merge_requests.values()]

    def get_merge_request(self, project_id, mr_iid):
        self.reads.append(('get_merge_request', (project_id, mr_iid)))
        mr = self.merge_requests.get((project_id, mr_iid))
        if mr is None:
            raise GitLabNotFound(404, {'message': '404 Not found'})
        return dict(mr)

    def get_approvals(self, project_id, mr_iid):
        self.reads.append(('get_approvals', (project_id, mr_iid)))
        self._maybe_fail('get_approvals', (project_id, mr_iid))
        usernames = self.approvals.get((project_id, mr_iid), [])
        return {'approved_by': [{'user': {'username': name}} for name in usernames]}

    def list_discussions(self, project_id, mr_iid):
        self.reads.append(('list_discussions', (project_id, mr_iid)))
        return self.discussions.get((project_id, mr_iid), [])

    def list_notes(self, project_id, mr_iid):
        self.reads.append(('list_notes', (project_id, mr_iid)))
        return self.notes.get((project_id, mr_iid), [])

    def set_labels(self, project_id, mr_iid, labels):
        self.calls.append(('set_labels', (project_id, mr_iid), list(labels)))
        self.merge_requests[(project_id, mr_iid)]['labels'] = list(labels)

    def create_note(self, project_id, mr_iid, body):
        self.calls.append(('create_note', (project_id, mr_iid), body))
        self.notes.setdefault((project_id, mr_iid), []).append({
            'body': body,
            'author': {'username': SETTINGS['bot_username']},
            'created_at': NOW.isoformat(),
            'system': False,
        })


def make_mr(iid=1, project_id=10, labels=(), author='alice', title='Add feature'):
    return {
        'project_id': project_id,
        'iid': iid,
        'title': title,
        'web_url': f'https://gitlab.example.com/group/project/-/merge_requests/{iid}',
        'author': {'username': author},
        'labels': list(labels),
    }


def make_note(system=False, resolvable=True, resolved=False, body='Looks good', author='bob',
              created_at='2024-06-01T10:00:00.000Z'):
    return {
        'body': body,
        'author': {'username': author},
        'created_at': created_at,
        'system': system,
        'resolvable': resolvable,
        'resolved': resolved,
    }


def make_discussion(*notes):
    return {'id': 'abc', 'notes': list(notes)}


@pytest.fixture
def settings():
    return dict(SETTINGS)


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger('mrautomator')
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def gitlab_env(monkeypatch):
    """Minimal valid environment; tests delete or override entries."""
    for name in ('APPROVAL_THRESHOLD', 'APPROVAL_LABEL', 'READY_TO_MERGE_LABEL', 'BOT_USERNAME',
                 'FAIL_FAST', 'GITLAB_TIMEOUT', 'MR_AUTOMATOR_CONFIG', 'LOG_DIR'):
        monkeypatch.delenv(name, raising=False)
    env = {
        'GITLAB_URL': 'https://gitlab.example.com/',
        'GITLAB_TOKEN': 'glpat-secret',
        'GROUP_ID': '42',
    }
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    return env
