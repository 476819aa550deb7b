from fastapi import APIRouter

from codejudge.sandbox import get_sandbox

router = APIRouter(prefix="/runner", tags=["Runner"])


@router.get("/health")
async def runner_health() -> dict:
    sandbox = get_sandbox()
    return await sandbox.health()
