from orchestrator.context_manager.manager import ContextManager

__all__ = ["ContextManager"]
