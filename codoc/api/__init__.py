"""HTTP access to the Codoc chatbot API."""

from codoc.api.client import ChatbotClient
from codoc.api.schemas import SendMessageRequest, SendMessageResponse

__all__ = ["ChatbotClient", "SendMessageRequest", "SendMessageResponse"]
