"""Storage layer for Humantime: the key-value store and typed repositories."""

from .active import ActiveBlockRepository
from .blocks import BlockFilter, BlockRepository
from .kv import IntegrityReport, KeyValueStore, StoreOptions
from .models import (
    ActiveBlock,
    Block,
    Config,
    Goal,
    GoalType,
    NotifyConfig,
    Progress,
    Project,
    Task,
    UndoAction,
    UndoState,
    Webhook,
    WebhookType,
)
from .repository import (
    ConfigRepository,
    GoalRepository,
    NotifyConfigRepository,
    ProjectRepository,
    Repository,
    TaskRepository,
    UndoRepository,
    WebhookRepository,
)
from .safety import DiskSpaceGuard, DiskUsage, SpaceReport

__all__ = [
    "ActiveBlock",
    "ActiveBlockRepository",
    "Block",
    "BlockFilter",
    "BlockRepository",
    "Config",
    "ConfigRepository",
    "DiskSpaceGuard",
    "DiskUsage",
    "Goal",
    "GoalRepository",
    "GoalType",
    "IntegrityReport",
    "KeyValueStore",
    "NotifyConfig",
    "NotifyConfigRepository",
    "Progress",
    "Project",
    "ProjectRepository",
    "Repository",
    "SpaceReport",
    "StoreOptions",
    "Task",
    "TaskRepository",
    "UndoAction",
    "UndoRepository",
    "UndoState",
    "Webhook",
    "WebhookRepository",
    "WebhookType",
]
