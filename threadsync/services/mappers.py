"""Raw store records -> canonical values.

Every mapper here is total: any mapping, however malformed, produces a value.
"""

import math
from typing import Any, Dict, List, Mapping, Optional

from threadsync.models import fields
from threadsync.schemas.chat import CanonicalMessage, ConversationRecord, PeerPresence
from threadsync.services.status_reconciler import reconcile_status
from threadsync.utils.values import first_present, to_bool, to_millis, to_string_list, to_text


def map_message(record_id: str, data: Mapping[str, Any], source_id: str) -> CanonicalMessage:
    content = first_present(data, fields.MESSAGE_CONTENT)
    message_type = first_present(data, fields.MESSAGE_TYPE)
    sender = first_present(data, fields.MESSAGE_SENDER)
    reconciled = reconcile_status(data)
    return CanonicalMessage(
        id=str(record_id),
        conversation_id=str(source_id),
        sender_id=str(sender) if sender is not None else "",
        content=content if isinstance(content, str) else "",
        message_type=message_type if isinstance(message_type, str) and message_type else "text",
        created_at=to_millis(first_present(data, fields.MESSAGE_CREATED_AT)),
        status=reconciled.status,
        is_read=reconciled.is_read,
    )


_TYPE_PREVIEWS = {
    "audio": "Voice message",
    "voice": "Voice message",
    "image": "Image",
    "file": "File",
    "location": "Location",
}


def preview_text(data: Mapping[str, Any]) -> Optional[str]:
    """Conversation-list preview for a message record."""
    text = to_text(first_present(data, fields.MESSAGE_CONTENT + fields.CONVERSATION_LAST_TEXT[:2]))
    if text:
        return text
    kind = str(first_present(data, fields.MESSAGE_TYPE) or "").lower()
    if kind in _TYPE_PREVIEWS:
        return _TYPE_PREVIEWS[kind]
    media = data.get("media")
    if isinstance(media, list) and media:
        return "Media message"
    attachment = data.get("attachment_url")
    if isinstance(attachment, str) and attachment:
        return "Attachment"
    return None


def extract_participant_ids(data: Mapping[str, Any]) -> List[str]:
    for name in fields.PARTICIPANT_ARRAYS:
        ids = to_string_list(data.get(name))
        if ids:
            return ids
    return to_string_list([data.get(name) for name in fields.PARTICIPANT_PAIR])


def _unread_counters(value: Any) -> Dict[str, int]:
    if not isinstance(value, Mapping):
        return {}
    counters: Dict[str, int] = {}
    for user_id, count in value.items():
        if isinstance(count, bool) or not isinstance(count, (int, float)):
            continue
        if isinstance(count, float) and not math.isfinite(count):
            continue
        counters[str(user_id)] = int(count)
    return counters


def map_conversation(record_id: str, data: Mapping[str, Any]) -> ConversationRecord:
    last_message_at = to_millis(first_present(data, fields.CONVERSATION_LAST_AT))
    updated_at = to_millis(first_present(data, fields.CONVERSATION_UPDATED_AT))
    if updated_at is None:
        updated_at = last_message_at
    if updated_at is None:
        updated_at = to_millis(first_present(data, fields.CONVERSATION_CREATED_AT))
    last_text = first_present(data, fields.CONVERSATION_LAST_TEXT)
    return ConversationRecord(
        id=str(record_id),
        participant_ids=extract_participant_ids(data),
        last_message_text=str(last_text) if last_text else None,
        last_message_at=last_message_at,
        updated_at=updated_at,
        unread_count_by_user=_unread_counters(first_present(data, fields.CONVERSATION_UNREAD)),
    )


def _resolve_online(data: Mapping[str, Any]) -> Optional[bool]:
    for name in fields.USER_ONLINE:
        resolved = to_bool(data.get(name))
        if resolved is not None:
            return resolved
    nested = data.get("presence")
    if isinstance(nested, Mapping):
        for name in fields.USER_NESTED_ONLINE:
            resolved = to_bool(nested.get(name))
            if resolved is not None:
                return resolved
    return None


def _resolve_last_seen(data: Mapping[str, Any]) -> Optional[int]:
    value = first_present(data, fields.USER_LAST_SEEN)
    nested = data.get("presence")
    if value is None and isinstance(nested, Mapping):
        value = first_present(nested, fields.USER_NESTED_LAST_SEEN)
    return to_millis(value)


def display_name(data: Mapping[str, Any]) -> Optional[str]:
    full_name = " ".join(
        part for part in (to_text(data.get("firstName")), to_text(data.get("lastName"))) if part
    )
    if full_name:
        return full_name
    for name in fields.USER_DISPLAY_NAME:
        text = to_text(data.get(name))
        if text:
            return text
    return None


def map_user_profile(user_id: str, data: Mapping[str, Any]) -> PeerPresence:
    avatar = None
    for name in fields.USER_AVATAR:
        avatar = to_text(data.get(name))
        if avatar:
            break
    return PeerPresence(
        user_id=user_id,
        display_name=display_name(data),
        avatar_url=avatar,
        is_online=_resolve_online(data),
        last_seen_at=_resolve_last_seen(data),
    )


def fallback_label(user_id: str) -> str:
    return f"User {user_id[:6]}"
