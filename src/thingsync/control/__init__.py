"""Command layer: expectation tracking and group cascades."""

from thingsync.control.cascade import GroupCascade
from thingsync.control.executor import CommandExecutor

__all__ = ["CommandExecutor", "GroupCascade"]
