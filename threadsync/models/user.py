from typing import Any, Optional, TypedDict


class UserDocument(TypedDict, total=False):

    _id: str
    uid: str
    email: str
    name: Optional[str]
    firstName: Optional[str]
    lastName: Optional[str]
    avatarUrl: Optional[str]
    isOnline: bool
    lastSeenAt: Any
