"""Turn-taking conversation loop."""

from .session import SessionContext
from .orchestrator import ConversationOrchestrator

__all__ = ["ConversationOrchestrator", "SessionContext"]
