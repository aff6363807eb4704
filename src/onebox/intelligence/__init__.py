"""Categorization services and the LLM client backing them."""

from .category import (
    CATEGORY_LABELS,
    INTERESTED,
    KeywordCategoryService,
    LLMCategoryService,
)
from .llm import LLMClient, LLMError, OllamaClient

__all__ = [
    "CATEGORY_LABELS",
    "INTERESTED",
    "KeywordCategoryService",
    "LLMCategoryService",
    "LLMClient",
    "LLMError",
    "OllamaClient",
]
