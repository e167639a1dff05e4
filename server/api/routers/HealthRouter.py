"""Health router: combined reachability of all providers plus the tracker summary."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from shared.dependencies.auth import verify_api_key

health_router = APIRouter()


@health_router.get(
    "/health",
    dependencies=[Depends(verify_api_key)],
    tags=["Health"],
)
async def handle_health(request: Request) -> JSONResponse:
    """Report whether source, embedding provider and vector index are reachable.

    Returns:
        JSONResponse: The health report, with status 503 if any provider is unreachable.
    """
    report = await request.app.state.orchestrator.get_health()
    return JSONResponse(status_code=200 if report.healthy else 503, content=report.model_dump(mode="json"))
