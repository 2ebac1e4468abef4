"""WebSocket message models exchanged with the browser client."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class StartConversation(BaseModel):
    """Handshake that binds a connection to a bot and user."""

    model_config = ConfigDict(populate_by_name=True)

    bot_id: str = Field(alias="botId", min_length=1)
    interacting_user_id: str = Field(alias="interactingUserId", min_length=1)
    app_check_token: Optional[str] = Field(default=None, alias="appCheckToken")
    user_name: Optional[str] = Field(default=None, alias="userName")
    user_email: Optional[str] = Field(default=None, alias="userEmail")


class AudioStart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    language_code: Optional[str] = Field(default=None, alias="languageCode")


class ContentPart(BaseModel):
    type: str
    text: str = ""


class ConversationItem(BaseModel):
    content: list[ContentPart] = Field(default_factory=list)


class ConversationItemCreate(BaseModel):
    item: ConversationItem = Field(default_factory=ConversationItem)

    def input_text(self) -> Optional[str]:
        """Return the first ``input_text`` part, if any."""
        for part in self.item.content:
            if part.type == "input_text":
                return part.text
        return None


class UserActionCompleted(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    appointment_data: Optional[dict[str, Any]] = Field(default=None, alias="appointmentData")
    details: Optional[dict[str, Any]] = None

    def event_details(self) -> Optional[dict[str, Any]]:
        return self.appointment_data or self.details


class CorrectionRequest(BaseModel):
    """Body of the supervisor correction endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId", min_length=1)
    correction_message: str = Field(alias="correctionMessage", min_length=1)
