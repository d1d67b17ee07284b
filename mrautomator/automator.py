#!/usr/bin/env python3
"""
Merge request review automator.

For every open merge request of a group (or a single one given on the
command line) the automator:

1. skips drafts,
2. adds or removes the approval label depending on the approval count,
3. for approved merge requests without open threads, posts a "ready to be
   merged" notice at most once a week and swaps the approval label for the
   ready-to-merge label.
"""

import argparse
import sys

import requests

from .config_loader import (ConfigError, load_config, validate_config,
                            get_gitlab_settings, get_label_settings, get_run_settings)
from .gitlab import GitLab, GitLabError, GitLabNotFound, GitLabUnauthorized
from .logging_config import get_logger, new_run_id, setup_logging
from .params import Outcome
from .report import print_separator, print_summary
from . import review_state

slog = get_logger(__name__)

# Errors that fail one merge request without stopping the others
ITEM_ERRORS = (GitLabError, requests.exceptions.RequestException, ValueError)

USAGE_EPILOG = """\
Required environment variables:
  GITLAB_TOKEN                # Your GitLab access token
  GROUP_ID                    # ID of the GitLab group to monitor (not needed with PROJECT_ID MR_IID)
  GITLAB_URL                  # GitLab instance URL (e.g., https://gitlab.example.com)

Optional environment variables:
  APPROVAL_THRESHOLD          # Number of approvals required (default: 2)
  APPROVAL_LABEL              # Label for approved MRs (default: double-approved)
  READY_TO_MERGE_LABEL        # Label for MRs ready to merge (default: ready-to-be-merged)
  BOT_USERNAME                # Username for bot comments (default: gitlab-bot)
  FAIL_FAST                   # Abort on the first failing MR (default: false)
  GITLAB_TIMEOUT              # Request timeout in seconds (default: none)
  MR_AUTOMATOR_CONFIG         # YAML config file (default: ./.mr-automator.yaml)
  LOG_LEVEL, LOG_DIR          # Logging level and optional log file directory
"""


class MergeRequestNotFound(Exception):
    pass


class MergeRequestResult:
    """What happened to one merge request during a run."""

    def __init__(self, mr):
        self.project_id = mr.get('project_id')
        self.iid = mr.get('iid')
        self.title = mr.get('title', '')
        self.web_url = mr.get('web_url', '')
        self.outcome = Outcome.UNCHANGED
        self.actions = []

    @property
    def reference(self):
        return f"{self.project_id}!{self.iid}"

    def __repr__(self):
        return f"<MergeRequestResult {self.reference} {self.outcome.value} {self.actions}>"


def _write_labels(api, result, labels, slog_message):
    api.set_labels(result.project_id, result.iid, labels)
    slog.info(slog_message, mr_iid=result.iid, labels=",".join(labels))


def process_merge_request(api, mr, settings, now=None):
    """
    Apply the review rules to one merge request.

    Args:
        api: GitLab client (or anything with the same read/write methods)
        mr: Merge request payload as returned by GitLab
        settings: dict from config_loader.get_label_settings()
        now: Reference time for the reminder interval (default: current UTC)

    Returns:
        MergeRequestResult
    """
    result = MergeRequestResult(mr)
    labels = list(mr.get('labels') or [])
    author = (mr.get('author') or {}).get('username', 'unknown')
    approval_label = settings['approval_label']
    ready_label = settings['ready_label']

    slog.info("Starting process for MR", mr_iid=result.iid, project=result.project_id)
    slog.info("Merge request details", title=result.title, url=result.web_url,
              labels=",".join(labels) or "-")

    if review_state.is_draft(labels):
        slog.info("Skipping MR - marked as draft", mr_iid=result.iid)
        result.outcome = Outcome.SKIPPED_DRAFT
        return result

    approvals = api.get_approvals(result.project_id, result.iid)
    approved_by = review_state.approvers(approvals)
    slog.info("Approvals counted", mr_iid=result.iid, count=len(approved_by),
              needed=settings['threshold'], approved_by=",".join(sorted(approved_by)) or "-")

    new_labels = review_state.apply_approval_rule(labels, len(approved_by), settings)
    if new_labels is not None:
        if approval_label in new_labels:
            _write_labels(api, result, new_labels, f"Added {approval_label} label")
            result.actions.append(f"+{approval_label}")
            result.outcome = Outcome.APPROVED
        else:
            _write_labels(api, result, new_labels, f"Removed {approval_label} label (insufficient approvals)")
            result.actions.append(f"-{approval_label}")
            result.outcome = Outcome.APPROVAL_REMOVED
        labels = new_labels
    elif len(approved_by) >= settings['threshold']:
        slog.info("Not adding approval label - MR already has status labels", mr_iid=result.iid)

    if not review_state.needs_readiness_check(labels, settings):
        return result

    slog.info("Checking for open discussions", mr_iid=result.iid)
    discussions = api.list_discussions(result.project_id, result.iid)
    open_threads = review_state.has_open_threads(discussions)
    if open_threads:
        slog.info("Found open discussions - MR not yet ready to be merged", mr_iid=result.iid)
        result.outcome = Outcome.WAITING_ON_THREADS
        return result

    slog.info("MR is ready to be merged, no open discussions found", mr_iid=result.iid)
    notes = api.list_notes(result.project_id, result.iid)
    last_notice = review_state.last_ready_notice(notes, settings['bot_username'])
    cadence = review_state.reminder_cadence(last_notice, now)
    slog.debug("Reminder cadence", mr_iid=result.iid, cadence=cadence.value, last_notice=last_notice)

    ready_labels, notice = review_state.plan_readiness(labels, open_threads, cadence, settings)

    if notice is None:
        slog.info("Recent reminder exists, skipping notification", mr_iid=result.iid)
    else:
        slog.info("Sending notification", mr_iid=result.iid, kind=notice.value, author=author)
        api.create_note(result.project_id, result.iid, review_state.notice_body(notice, author))
        result.actions.append(f"notice:{notice.value}")

    if ready_labels is not None:
        _write_labels(api, result, ready_labels, f"Replaced {approval_label} with {ready_label}")
        result.actions.append(f"-{approval_label}")
        result.actions.append(f"+{ready_label}")

    result.outcome = Outcome.READY
    return result


def fetch_targets(api, config, target=None):
    if target is None:
        group_id = get_gitlab_settings(config)['group_id']
        slog.info("Retrieving all merge requests...", group_id=group_id)
        merge_requests = api.list_group_merge_requests(group_id)
        slog.info(f"Processing {len(merge_requests)} merge requests...")
        return merge_requests

    project_id, mr_iid = target
    slog.info(f"Processing single merge request: Project {project_id}, MR #{mr_iid}")
    try:
        mr = api.get_merge_request(project_id, mr_iid)
    except GitLabNotFound:
        mr = None
    if not mr:
        raise MergeRequestNotFound(f"MR not found: project {project_id}, MR #{mr_iid}")
    return [mr]


def run(api, config, target=None, now=None):
    """
    Process every target merge request in order.

    With ``run.fail_fast`` unset, an API failure on one merge request is
    recorded as a failed result and the next one is processed. With it set,
    the error propagates and the run stops.

    Returns:
        list of MergeRequestResult
    """
    settings = get_label_settings(config)
    fail_fast = get_run_settings(config)['fail_fast']
    results = []

    for mr in fetch_targets(api, config, target):
        print_separator()
        try:
            results.append(process_merge_request(api, mr, settings, now))
        except GitLabUnauthorized:
            raise
        except ITEM_ERRORS as e:
            if fail_fast:
                raise
            slog.error("Failed to process MR", mr_iid=mr.get('iid'), project=mr.get('project_id'),
                       error_type=type(e).__name__, error=str(e))
            failed = MergeRequestResult(mr)
            failed.outcome = Outcome.FAILED
            failed.actions.append(type(e).__name__)
            results.append(failed)
        else:
            slog.info("Processing complete for MR", mr_iid=mr.get('iid'))
    print_separator()

    return results


class UsageErrorParser(argparse.ArgumentParser):
    """Usage errors exit 1 like every other validation failure."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser():
    parser = UsageErrorParser(
        prog='mr-automator',
        usage='%(prog)s [-h] [--fail-fast] [PROJECT_ID MR_IID]',
        description="Label approved GitLab merge requests and remind authors when they are ready to be merged.",
        epilog=USAGE_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('target', nargs='*', metavar='ARG',
                        help="PROJECT_ID MR_IID: process a single merge request instead of the whole group")
    parser.add_argument('--fail-fast', action='store_true',
                        help="stop at the first merge request that fails")
    return parser


def parse_target(parser, target):
    if not target:
        return None
    if len(target) != 2:
        parser.print_usage(sys.stderr)
        print("Expected either no arguments or PROJECT_ID MR_IID. Use --help for more information.",
              file=sys.stderr)
        sys.exit(1)
    project_id, mr_iid = target
    try:
        return project_id, int(mr_iid)
    except ValueError:
        parser.print_usage(sys.stderr)
        print(f"MR_IID must be a number, got {mr_iid!r}", file=sys.stderr)
        sys.exit(1)


def main(argv=None, environ=None):
    """
    Entry point for the mr-automator command.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    target = parse_target(parser, args.target)

    run_id = new_run_id()
    try:
        setup_logging(run_id, environ)
    except ValueError as e:
        print(e, file=sys.stderr)
        sys.exit(1)

    try:
        config = validate_config(load_config(environ), single_target=target is not None)
    except ConfigError as e:
        print(e, file=sys.stderr)
        print("Use --help for more information.", file=sys.stderr)
        sys.exit(1)

    if args.fail_fast:
        config['run']['fail_fast'] = True

    gitlab_settings = get_gitlab_settings(config)
    api = GitLab(gitlab_settings['url'], gitlab_settings['token'], timeout=gitlab_settings['timeout'])
    slog.info(f"Using GitLab instance: {gitlab_settings['url']}", run_id=run_id)

    try:
        results = run(api, config, target)
    except MergeRequestNotFound as e:
        slog.error(str(e))
        print("MR not found", file=sys.stderr)
        sys.exit(1)
    except GitLabUnauthorized as e:
        slog.error("GitLab rejected the token", status_code=e.status_code)
        print("Sorry, unauthorized", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        slog.error("Run aborted", error_type=type(e).__name__, error=str(e))
        sys.exit(1)

    print_summary(results)

    if any(result.outcome is Outcome.FAILED for result in results):
        sys.exit(1)
    sys.exit(0)


if __name__ == '__main__':
    main()
