from typing import Any, Dict, List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    # participants: two-field pair and array representations
    participant1_id: str
    participant2_id: str
    participantIds: List[str]
    participants: List[str]
    lastMessageText: Optional[str]
    last_message_text: Optional[str]
    lastMessageAt: Any
    last_message_at: Any
    createdAt: Any
    created_at: Any
    updatedAt: Any
    updated_at: Any
    # per-user unread counters (user_id -> count)
    unreadCountByUser: Dict[str, int]
