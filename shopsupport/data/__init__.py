"""
Data Module
Typed records and the persistence collaborator consumed by the session layer.
"""

from .models import AISuggestion, Conversation, ConversationStatus, Customer, Message, SenderType, User
from .store import MongoSupportStore, SupportStore

__all__ = [
    "AISuggestion",
    "Conversation",
    "ConversationStatus",
    "Customer",
    "Message",
    "SenderType",
    "User",
    "MongoSupportStore",
    "SupportStore",
]
