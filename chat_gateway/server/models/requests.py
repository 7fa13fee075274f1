"""Request models for API endpoints."""
import re
from typing import Annotated, Any, Literal, Optional, Union
from pydantic import Field, field_validator

from chat_gateway.server.models.common import CamelModel

SESSION_NAME_PATTERN = re.compile(r"^[\w .\-]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]+$")

MessageType = Literal["text", "image", "video", "audio", "document"]


class CreateSessionRequest(CamelModel):
    name: Annotated[str, Field(min_length=1, max_length=64)]
    phone_number: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v or not SESSION_NAME_PATTERN.match(v):
            raise ValueError("Name may contain letters, digits, spaces, dots, dashes and underscores")
        return v

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        if not PHONE_PATTERN.match(v):
            raise ValueError("Phone number may only contain digits, spaces, dashes, parentheses and a leading +")
        if len(re.sub(r"\D", "", v)) < 10:
            raise ValueError("Phone number must contain at least 10 digits")
        return v.strip()


class SendMessageRequest(CamelModel):
    to: Annotated[str, Field(min_length=1)]
    type: MessageType = "text"
    content: Union[str, dict[str, Any]]

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: Union[str, dict[str, Any]]) -> Union[str, dict[str, Any]]:
        if isinstance(v, str) and not v.strip():
            raise ValueError("Content cannot be empty")
        if isinstance(v, dict) and not v:
            raise ValueError("Content cannot be empty")
        return v


class AutoResponseSettingsRequest(CamelModel):
    enabled: bool = True
    trigger_word: Optional[str] = None
    prompt: str = ""


class AutoResponseTestRequest(CamelModel):
    message: Annotated[str, Field(min_length=1)]
    session_id: Optional[str] = None
    trigger_word: Optional[str] = None
    prompt: Optional[str] = None


class TriggerModel(CamelModel):
    keyword: Annotated[str, Field(min_length=1)]
    type: Literal["contains", "exact"] = "contains"


class QAPairModel(CamelModel):
    question: Annotated[str, Field(min_length=1)]
    answer: str = ""


class CreateAgentRequest(CamelModel):
    name: Annotated[str, Field(min_length=1, max_length=100)]
    prompt: Annotated[str, Field(min_length=1)]
    is_active: bool = True
    shared: bool = False
    triggers: list[Union[str, TriggerModel]] = Field(default_factory=list)
    qa_pairs: list[QAPairModel] = Field(default_factory=list)


class UpdateAgentRequest(CamelModel):
    name: Optional[Annotated[str, Field(min_length=1, max_length=100)]] = None
    prompt: Optional[Annotated[str, Field(min_length=1)]] = None
    is_active: Optional[bool] = None
    triggers: Optional[list[Union[str, TriggerModel]]] = None
    qa_pairs: Optional[list[QAPairModel]] = None
