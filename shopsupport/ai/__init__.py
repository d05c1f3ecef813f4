from .suggestions import OpenAISuggestionService, SuggestionService

__all__ = ["OpenAISuggestionService", "SuggestionService"]
