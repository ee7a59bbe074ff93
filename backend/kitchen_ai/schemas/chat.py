"""Pydantic schemas for the chat assistant"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Validated in the chat service so malformed items get the Spanish error
    messages: List[Any] = Field(default_factory=list)
    conversation_history: Optional[List[Dict[str, Any]]] = Field(None, alias="conversationHistory")
    user_id: Optional[str] = None
