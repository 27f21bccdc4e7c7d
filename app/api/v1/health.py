"""
Health check endpoint
"""

from fastapi import APIRouter

from app.schemas.common import ApiResponse

router = APIRouter()


@router.get("/health", response_model=ApiResponse[dict[str, str]])
async def health_check():
    """Liveness only; dependencies are not probed"""
    return ApiResponse[dict[str, str]](data={"api": "ok"})
