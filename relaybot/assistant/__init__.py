from .base import AssistantBackend
from .openai_client import OpenAIAssistantClient

__all__ = ["AssistantBackend", "OpenAIAssistantClient"]
