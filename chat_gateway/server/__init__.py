"""HTTP API for the chat session gateway."""
