"""Multi-account mailbox synchronization with sales-intent categorization."""

__version__ = "0.1.0"
