"""
Presence endpoint
"""

from fastapi import APIRouter

from app.core.deps import CurrentUserDep, GatewayDep
from app.schemas.common import ApiResponse

router = APIRouter()


@router.get("/online", response_model=ApiResponse[list[str]])
async def online_users(user_id: CurrentUserDep, gateway: GatewayDep):
    """User ids with a live socket on this node"""
    return ApiResponse[list[str]](data=gateway.online_user_ids())
