from typing import Any, Optional, TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    conversationId: str
    sender_id: str
    senderId: str
    content: str
    text: str
    message_type: str
    messageType: str
    created_at: Any
    createdAt: Any
    status: Optional[str]
    # delivery states
    delivered: bool
    is_read: bool
    isRead: bool
    read: bool


class ReadReceiptFields(TypedDict, total=False):
    is_read: bool
    isRead: bool
    read: bool
    seen: bool
    status: str
    read_at: Any
    readAt: Any
