"""
Invitations module for Taskdeck.

Single-use, expiring, token-addressed offers of workspace membership.
"""

from .lifecycle import InvitationLifecycle

__all__ = ["InvitationLifecycle"]
