"""
mr-automator: keeps GitLab merge request status labels in sync with reviews

For each open merge request of a group the automator:
- adds the approval label once enough reviewers approved
- swaps it for the ready-to-merge label when no discussion is left open
- reminds the author, at most once a week, that the MR is ready to be merged

Entry point: main() function from the automator module
"""

from .automator import main

__all__ = ['main']
