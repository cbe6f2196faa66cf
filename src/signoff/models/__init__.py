"""Signoff data models."""

from signoff.models.actor import Actor, ViewAsOverride
from signoff.models.instance import Signature, WorkflowInstance
from signoff.models.settings import ApprovalAuthority, WorkflowSettings

__all__ = [
    "Actor",
    "ApprovalAuthority",
    "Signature",
    "ViewAsOverride",
    "WorkflowInstance",
    "WorkflowSettings",
]
