"""Command-line interface for the chat session gateway."""
