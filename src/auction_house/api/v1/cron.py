"""Scheduler-facing sweep endpoint."""

from fastapi import APIRouter

from auction_house.api.deps import CronGuard, SweeperDep
from auction_house.schemas.sweep import SweepResponse

router = APIRouter(dependencies=[CronGuard])


@router.post("/expirations", response_model=SweepResponse)
async def run_expirations(sweeper: SweeperDep):
    """Run every expiration stage once and report per-row errors."""
    result = await sweeper.run()
    return SweepResponse.model_validate(result.as_dict())
