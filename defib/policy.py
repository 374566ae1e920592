"""
Action policy - maps an issue class to auto / ask / deny

auto: the monitor may execute the remediation
ask:  remediation is only recommended (guidance for a human)
deny: the issue is only recorded and alerted
"""

from typing import Optional

from defib.config import ActionConfig
from defib.models import ActionMode, IssueType


class ActionPolicy:
    """Pure lookup over an ActionConfig"""

    def __init__(self, actions: Optional[ActionConfig] = None):
        self.actions = actions or ActionConfig()

    def mode_for(self, issue_type: IssueType, safe: bool = False, restart: bool = False) -> ActionMode:
        """
        Resolve the action mode for one candidate remediation

        Args:
            issue_type: Type of issue being remediated
            safe: Process matched a safe-to-kill pattern (runaway only)
            restart: Remediation is a compose restart rather than a kill (swap only)
        """
        if issue_type == IssueType.CONTAINER:
            return self.actions.restart_container
        if issue_type == IssueType.RUNAWAY:
            return self.actions.kill_runaway if safe else self.actions.kill_unknown
        if issue_type == IssueType.MEMORY:
            return self.actions.kill_unknown
        if issue_type == IssueType.SWAP:
            return self.actions.restart_for_swap if restart else self.actions.kill_swap_hog
        # Stuck (D-state) processes cannot be remediated by signal
        return ActionMode.DENY
