"""Data models for snapshots, targets, and commands."""

from thingsync.models._base import ThingSyncBaseModel
from thingsync.models.command import CommandRequest, CommandResult, DesiredState, ExpectationState
from thingsync.models.snapshot import Capabilities, LightColor, Power, SourceSnapshot
from thingsync.models.target import Device, Group, Source, Target, make_target

__all__ = [
    "Capabilities",
    "CommandRequest",
    "CommandResult",
    "DesiredState",
    "Device",
    "ExpectationState",
    "Group",
    "LightColor",
    "Power",
    "Source",
    "SourceSnapshot",
    "Target",
    "ThingSyncBaseModel",
    "make_target",
]
