"""API request and response models."""
from chat_gateway.server.models.common import CamelModel, error_envelope, success_envelope
__all__ = ["CamelModel", "error_envelope", "success_envelope"]
