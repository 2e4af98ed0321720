import aiosqlite
from fastapi import APIRouter, Depends

from novastudy.db.sqlite import get_db, get_profile, set_grade_level
from novastudy.dependencies import get_current_user
from novastudy.models.session import Profile, ProfileUpdate

router = APIRouter()


@router.get("/", response_model=Profile)
async def read_profile(
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    return await get_profile(db, user_id)


@router.put("/", response_model=Profile)
async def update_profile(
    body: ProfileUpdate,
    user_id: str = Depends(get_current_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    grade_level = body.grade_level.strip() if body.grade_level else None
    return await set_grade_level(db, user_id, grade_level or None)
