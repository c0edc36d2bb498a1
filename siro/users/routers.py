import logging

from fastapi import APIRouter, Depends, HTTPException, status

from siro.core.container import Services
from siro.core.dependencies import get_current_user_id, get_services

from .schemas import ProfileModel, ProfileUpdateModel, UsersResponseModel


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=UsersResponseModel, status_code=200)
async def discover_users(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    Users you can send a friend request to.

    Everyone except yourself and your current friends, ordered by username.

    **Errors**
    - `401`: Invalid or expired token.
    - `404`: Your profile does not exist.
    """
    if not await services.directory.get(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found.")

    users = await services.directory.discoverable(user_id)
    return {"users": [user.summary() for user in users]}


@router.patch("/me", response_model=ProfileModel, status_code=200)
async def update_me(
    data: ProfileUpdateModel,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    Update your profile.

    **Input Fields** (all optional, omitted fields are left unchanged)
    - **display_name**: 1–50 characters.
    - **about**: up to 280 characters.
    - **avatar**: URL of the avatar image.

    **Returns**
    - The updated profile.

    **Errors**
    - `401`: Invalid or expired token.
    - `404`: Profile not found.
    - `422`: Invalid input.
    """
    user = await services.directory.update_profile(user_id, **data.model_dump(exclude_none=True))
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found.")

    logger.info(f"profile_updated user_id={user_id} fields={sorted(data.model_dump(exclude_none=True))}")
    return ProfileModel.from_user(user)
