import json
import urllib.parse

import requests

from .logging_config import get_logger
from .params import MRALimits

slog = get_logger(__name__)


class GitLabError(Exception):
    """Non-2xx answer from the GitLab API."""

    def __init__(self, status_code, detail=None, url=None):
        self.status_code = status_code
        self.detail = detail
        self.url = url
        super().__init__(f"GitLab API error {status_code} for {url}: {detail}")


class GitLabUnauthorized(GitLabError):
    pass


class GitLabNotFound(GitLabError):
    pass


class AttrDict(dict):
    def __getattr__(self, attr):
        try:
            res = self[attr]
        except KeyError:
            raise AttributeError(attr)
        return res


def json_decode(text):
    return json.JSONDecoder(object_pairs_hook=AttrDict).decode(text)


def quote_project(project_id):
    """Numeric ids pass through, "group/project" paths get encoded."""
    return urllib.parse.quote(str(project_id), safe="")


class GitLab:
    """
    Thin wrapper over the GitLab v4 REST API.

    Every request carries the PRIVATE-TOKEN header; responses are decoded
    into AttrDicts so callers can write ``mr.author.username``.
    """

    def __init__(self, url, token, timeout=None, session=None, per_page=MRALimits.PAGE_SIZE.value):
        self.url = url.rstrip('/')
        self.api_url = f"{self.url}/api/v4"
        self.timeout = timeout
        self.per_page = per_page
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({'PRIVATE-TOKEN': token})

    def request(self, method, path, params=None, payload=None):
        url = f"{self.api_url}{path}"
        slog.debug("Making GitLab API request", method=method, url=url, params=str(params))

        try:
            r = self.session.request(method, url, params=params, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            slog.error("GitLab API request failed", error=str(e), url=url)
            raise

        slog.debug("GitLab API response", status_code=r.status_code, url=url)

        if r.status_code in (401, 403):
            slog.error("GitLab API unauthorized", status_code=r.status_code, url=url)
            raise GitLabUnauthorized(r.status_code, self._error_detail(r), url)

        if r.status_code == 404:
            slog.warning("GitLab API resource not found", url=url)
            raise GitLabNotFound(r.status_code, self._error_detail(r), url)

        if not 200 <= r.status_code < 300:
            detail = self._error_detail(r)
            slog.error("GitLab API error", status_code=r.status_code, error=detail)
            raise GitLabError(r.status_code, detail, url)

        if not r.content:
            return None

        try:
            return json_decode(r.content.decode("utf-8"))
        except json.JSONDecodeError as e:
            slog.error("Failed to parse JSON response", error=str(e), response=r.text[:500])
            raise

    @staticmethod
    def _error_detail(r):
        try:
            return r.json()
        except ValueError:
            return r.text[:500]

    def get(self, path, params=None):
        return self.request('GET', path, params=params)

    def paginate(self, path, params=None):
        """
        Collect every page of a list endpoint.

        Pages are requested as page=1,2,... until one comes back empty.
        """
        params = {} if params is None else params.copy()
        params['per_page'] = self.per_page
        page = 1
        items = []

        while True:
            chunk = self.get(path, params={**params, 'page': page})
            if not chunk:
                break
            if not isinstance(chunk, list):
                raise GitLabError(200, f"expected a list from paginated endpoint, got {type(chunk).__name__}",
                                  f"{self.api_url}{path}")
            items.extend(chunk)
            slog.debug("Fetched page", path=path, page=page, items=len(chunk))
            page += 1

        return items

    # Reads

    def list_group_merge_requests(self, group_id):
        return self.paginate(f"/groups/{quote_project(group_id)}/merge_requests",
                             {'state': 'opened', 'with_approval_rules': 'true'})

    def get_merge_request(self, project_id, mr_iid):
        return self.get(f"/projects/{quote_project(project_id)}/merge_requests/{mr_iid}")

    def get_approvals(self, project_id, mr_iid):
        return self.get(f"/projects/{quote_project(project_id)}/merge_requests/{mr_iid}/approvals")

    def list_discussions(self, project_id, mr_iid):
        return self.paginate(f"/projects/{quote_project(project_id)}/merge_requests/{mr_iid}/discussions")

    def list_notes(self, project_id, mr_iid):
        return self.paginate(f"/projects/{quote_project(project_id)}/merge_requests/{mr_iid}/notes")

    # Writes

    def set_labels(self, project_id, mr_iid, labels):
        """Replace the full label set of a merge request."""
        return self.request('PUT', f"/projects/{quote_project(project_id)}/merge_requests/{mr_iid}",
                            payload={'labels': ','.join(labels)})

    def create_note(self, project_id, mr_iid, body):
        return self.request('POST', f"/projects/{quote_project(project_id)}/merge_requests/{mr_iid}/notes",
                            payload={'body': body})
