"""
Python client for the FinOps API.
"""
from finops_api.client.api import ApiClient, ApiError
from finops_api.client.chat import ChatMessage, ChatSession, conversation_key

__all__ = ["ApiClient", "ApiError", "ChatMessage", "ChatSession", "conversation_key"]
