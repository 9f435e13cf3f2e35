"""User profile router — registration and profile lookup."""
import logging

from fastapi import APIRouter, HTTPException

from app.chat.errors import ChatError
from app.chat.service import get_chat_services

from .schemas import UserCreate, UserProfile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", status_code=201, response_model=UserProfile)
async def create_user(body: UserCreate) -> UserProfile:
    """Register a chat profile.

    Returns:
        The created profile (201 Created), or 409 if the username is taken.
    """
    users = get_chat_services().users
    try:
        profile = users.create_user(body.username, body.fullname)
    except ChatError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    logger.info("[users] Registered %s as %s", profile.username, profile.id)
    return profile


@router.get("/{user_id}", response_model=UserProfile)
async def get_user(user_id: str) -> UserProfile:
    """Get a profile with its engagement counters and badges."""
    profile = get_chat_services().users.get_user(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="User not found")
    return profile
