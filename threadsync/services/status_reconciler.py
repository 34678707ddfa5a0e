"""Collapse the many read/delivery flags a message may carry into one status.

Any single piece of read evidence is enough; evidence is looked up under every
alias, so adding a flag to a record can only raise its status.
"""

from typing import Any, Iterable, Mapping, NamedTuple, Optional

from threadsync.models import fields
from threadsync.utils.values import first_present, to_bool, to_millis, to_string_list


KNOWN_STATUSES = ("sending", "sent", "delivered", "read", "failed")


class ReconciledStatus(NamedTuple):
    status: Optional[str]
    is_read: bool


def normalize_status(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if normalized in KNOWN_STATUSES else None


def _any_flag(data: Mapping[str, Any], aliases: Iterable[str]) -> bool:
    return any(to_bool(data.get(name)) is True for name in aliases)


def _any_other_id(data: Mapping[str, Any], aliases: Iterable[str], sender_id: str) -> bool:
    return any(uid != sender_id for name in aliases for uid in to_string_list(data.get(name)))


def _any_timestamp(data: Mapping[str, Any], aliases: Iterable[str]) -> bool:
    return any(to_millis(data.get(name)) is not None for name in aliases)


def reconcile_status(data: Mapping[str, Any]) -> ReconciledStatus:
    status = normalize_status(data.get("status"))
    sender = first_present(data, fields.MESSAGE_SENDER)
    sender_id = str(sender) if sender is not None else ""

    is_read = (
        _any_flag(data, fields.READ_FLAG)
        or status == "read"
        or _any_other_id(data, fields.READ_BY, sender_id)
        or _any_timestamp(data, fields.READ_AT)
    )
    if is_read:
        return ReconciledStatus("read", True)

    delivered = (
        _any_other_id(data, fields.DELIVERED_TO, sender_id)
        or _any_timestamp(data, fields.DELIVERED_AT)
        or _any_flag(data, fields.DELIVERED_FLAG)
    )
    if delivered and status in (None, "sent"):
        status = "delivered"
    return ReconciledStatus(status, False)
