"""Message parsing, cleanup, and downstream processing."""

from .cleanup import clean_text, strip_html
from .parser import MessageParser, ParseError
from .pipeline import MessagePipeline

__all__ = ["MessageParser", "MessagePipeline", "ParseError", "clean_text", "strip_html"]
