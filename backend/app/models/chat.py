"""
Chat-related Pydantic models
"""
from dataclasses import dataclass
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """Chat message model"""
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    """Request model for the chat relay endpoint (camelCase on the wire)"""
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    messages: List[ChatMessage] = Field(default_factory=list)
    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    model_name: Optional[str] = Field(default=None, alias="modelName")
    stream: bool = True
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")


class ConnectionTestRequest(BaseModel):
    """Request model for the connection test endpoint"""
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    model_name: Optional[str] = Field(default=None, alias="modelName")


class ConnectionTestResult(BaseModel):
    """Outcome of a connection test; `message` on success, `error` on failure"""
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    model: Optional[str] = None
    details: Optional[str] = None


@dataclass(frozen=True)
class ChatConfig:
    """LLM settings passed explicitly to the streaming consumer per call"""
    base_url: Optional[str]
    api_key: Optional[str]
    model_name: Optional[str]
    system_prompt: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.base_url and self.api_key and self.model_name)
