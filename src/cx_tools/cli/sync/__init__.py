"""Pull/push/clear reconciliation between the working tree and the remote app."""

from cx_tools.cli.sync.engine import ChangeSet, PullPreview, PullResult, SyncEngine
from cx_tools.cli.sync.env import EnvSync
from cx_tools.cli.sync.registry import CONFIG_SECTIONS, ENV_VARS, SYNC_TYPES
from cx_tools.cli.sync.sections import SectionSync

__all__ = [
    "CONFIG_SECTIONS",
    "ENV_VARS",
    "SYNC_TYPES",
    "ChangeSet",
    "EnvSync",
    "PullPreview",
    "PullResult",
    "SectionSync",
    "SyncEngine",
]
