from fastapi import APIRouter, Depends

from threadsync.database.connection import store_dependency
from threadsync.repositories.document_store import DocumentStore
from threadsync.repositories.user_repository import UserRepository
from threadsync.schemas.chat import PresenceOut
from threadsync.services.mappers import fallback_label, map_user_profile
from threadsync.services.presence_tracker import presence_label
from threadsync.utils.clock import now_ms


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}", response_model=PresenceOut)
async def presence(user_id: str, store: DocumentStore = Depends(store_dependency)):
    """
    Online/last-seen state of one user, read from the profile document or the
    ``uid`` lookup. Unknown users come back offline.
    """
    record = await UserRepository(store).get_profile(user_id)
    profile = map_user_profile(user_id, record.data) if record else None
    return PresenceOut(
        user_id=user_id,
        display_name=(profile.display_name if profile else None) or fallback_label(user_id),
        avatar_url=profile.avatar_url if profile else None,
        online=bool(profile and profile.is_online),
        last_seen_at=profile.last_seen_at if profile else None,
        label=presence_label(profile, now_ms()),
    )
