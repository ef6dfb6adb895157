"""
Chat Schemas - Request bodies for the chat router.
"""

from pydantic import BaseModel, Field
from typing import Optional, Literal

BackendModeName = Literal["local", "remote"]


class ChatRequest(BaseModel):
    """One user turn."""
    session_id: str = Field(..., min_length=1, description="Conversation identifier")
    message: str = Field(..., description="User message text")
    mode: Optional[BackendModeName] = Field(None, description="Switch backend before this turn")


class ModeRequest(BaseModel):
    mode: BackendModeName
