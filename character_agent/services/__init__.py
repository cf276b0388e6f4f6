
from .llm import LLMService
from .step_store import StepStoreClient
from .task_manager import TaskManager

__all__ = ["LLMService", "StepStoreClient", "TaskManager"]
