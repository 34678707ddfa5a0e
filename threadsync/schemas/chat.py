from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


MessageStatus = Literal["sending", "sent", "delivered", "read", "failed"]


class CanonicalMessage(BaseModel):

    model_config = ConfigDict(frozen=True)

    id: str
    conversation_id: str
    sender_id: str = ""
    content: str = ""
    message_type: str = "text"
    created_at: Optional[int] = None
    status: Optional[MessageStatus] = None
    is_read: bool = False


class ConversationRecord(BaseModel):
    """One raw conversation record after alias mapping."""

    model_config = ConfigDict(frozen=True)

    id: str
    participant_ids: List[str] = Field(default_factory=list)
    last_message_text: Optional[str] = None
    last_message_at: Optional[int] = None
    updated_at: Optional[int] = None
    unread_count_by_user: Dict[str, int] = Field(default_factory=dict)


class LogicalThread(BaseModel):
    """All conversation records sharing one participant set."""

    model_config = ConfigDict(frozen=True)

    key: str
    id: str
    participant_ids: List[str] = Field(min_length=1)
    source_ids: List[str] = Field(min_length=1)
    last_message_text: Optional[str] = None
    last_message_at: Optional[int] = None
    updated_at: Optional[int] = None
    merged_unread_count: int = 0


class PeerPresence(BaseModel):

    user_id: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    is_online: Optional[bool] = None
    last_seen_at: Optional[int] = None


class PresenceOut(BaseModel):

    user_id: str
    display_name: str
    avatar_url: Optional[str] = None
    online: bool
    last_seen_at: Optional[int] = None
    label: str


class SendMessageIn(BaseModel):

    content: str
    peer_id: Optional[str] = None
