"""Field-name aliases for every schema variant found in the store.

Each tuple is ordered by preference; the first alias holding a non-None value
wins. New legacy spellings go here and nowhere else.
"""

# messages
MESSAGE_CONTENT = ("content", "text", "body", "message")
MESSAGE_TYPE = ("message_type", "messageType")
MESSAGE_SENDER = ("sender_id", "senderId")
MESSAGE_CONVERSATION = ("conversation_id", "conversationId")
MESSAGE_CREATED_AT = ("created_at", "createdAt", "sentAt", "timestamp")
MESSAGE_ORDER_FIELDS = ("created_at", "createdAt")

# read / delivery evidence
READ_FLAG = ("is_read", "isRead", "read", "seen", "seenByRecipient")
READ_BY = ("read_by", "readBy", "read_by_user_ids", "readByUserIds")
READ_AT = ("read_at", "readAt")
DELIVERED_TO = ("delivered_to", "deliveredTo", "delivered_to_user_ids", "deliveredToUserIds")
DELIVERED_AT = ("delivered_at", "deliveredAt")
DELIVERED_FLAG = ("delivered",)

# conversations
PARTICIPANT_ARRAYS = ("participantIds", "participants")
PARTICIPANT_PAIR = ("participant1_id", "participant2_id")
CONVERSATION_LAST_TEXT = (
    "lastMessageText",
    "last_message_text",
    "lastMessage",
    "last_message",
    "lastMessageContent",
    "last_message_content",
)
CONVERSATION_LAST_AT = ("lastMessageAt", "last_message_at")
CONVERSATION_UPDATED_AT = ("updatedAt", "updated_at")
CONVERSATION_CREATED_AT = ("createdAt", "created_at")
CONVERSATION_UNREAD = ("unreadCountByUser",)

# user profiles
USER_ONLINE = ("isOnline", "is_online", "online", "active")
USER_NESTED_ONLINE = ("isOnline", "is_online", "online")
USER_LAST_SEEN = ("lastSeenAt", "last_seen_at", "lastSeen", "last_seen", "lastActiveAt", "last_active_at")
USER_NESTED_LAST_SEEN = ("lastSeenAt", "last_seen_at", "lastSeen", "last_seen")
USER_DISPLAY_NAME = ("name", "displayName", "email")
USER_AVATAR = ("avatarUrl", "photoURL", "photoUrl", "avatar")
USER_LOOKUP = "uid"
