"""interaction-engine: conversation interaction engine for streamed task event logs."""

import importlib.metadata

from interaction_engine.config import ConfigManager, EngineConfig, load_config
from interaction_engine.messages import AskKind, SayKind, TaskMessage
from interaction_engine.policy import AutoApprovalPolicy
from interaction_engine.render import RenderModel
from interaction_engine.session import ChatSession
from interaction_engine.state import ButtonLabel, InteractionPhase, InteractionState

__all__ = [
    "AskKind",
    "AutoApprovalPolicy",
    "ButtonLabel",
    "ChatSession",
    "ConfigManager",
    "EngineConfig",
    "InteractionPhase",
    "InteractionState",
    "RenderModel",
    "SayKind",
    "TaskMessage",
    "__version__",
    "load_config",
]

try:
    __version__ = importlib.metadata.version("interaction-engine")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"  # Fallback for development mode
