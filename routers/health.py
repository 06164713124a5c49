from fastapi import APIRouter, Request
from schemas.rooms import HealthResponse

health_router = APIRouter(tags=["health"])


@health_router.get("/health", response_model=HealthResponse, response_model_by_alias=True)
async def health(request: Request):
    backend = request.app.state.backend
    return HealthResponse(status="ok", room_count=backend.room_count, user_count=backend.user_count)
