"""API endpoints for the web interface."""

from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.config import get_settings
from ..data.gateway import load_gateway
from ..services.metrics import calculate_validator_health
from ..services.validator_service import ValidatorService

router = APIRouter()


@lru_cache
def get_validator_service() -> ValidatorService:
    """Shared service, so the query cache outlives single requests."""
    return ValidatorService(load_gateway(get_settings().ledger_gateway))


@router.get("/validators")
async def list_validators(service: ValidatorService = Depends(get_validator_service)):
    """All registered validators with complete data, metrics and payout health."""
    validators = await service.fetch_validators()
    return {
        "count": len(validators),
        "validators": [
            {
                **v.model_dump(mode="json"),
                "health": calculate_validator_health(v.rounds_since_last_payout).name.lower(),
            }
            for v in validators
        ],
    }


@router.get("/validators/{validator_id}")
async def get_validator(
    validator_id: int, service: ValidatorService = Depends(get_validator_service)
):
    """One validator with enrichment, metrics and payout health."""
    validator = await service.fetch_validator(validator_id, with_metrics=True)
    health = calculate_validator_health(validator.rounds_since_last_payout)
    return {**validator.model_dump(mode="json"), "health": health.name.lower()}


@router.get("/validators/{validator_id}/stakers")
async def get_validator_stakers(
    validator_id: int,
    pool: int | None = Query(None, ge=1, description="Pool number (1-based)"),
    service: ValidatorService = Depends(get_validator_service),
):
    """
    Stake per account for the validator's pools.

    - Without ``pool``, all pools are summed per account
    - With ``pool``, only that pool is counted
    """
    validator = await service.fetch_validator(validator_id)
    if pool is not None and pool > len(validator.pools):
        raise HTTPException(status_code=404, detail=f"Pool {pool} not found")

    scope = "all" if pool is None else pool - 1
    entries = await service.fetch_stakers_chart_data(validator_id, scope)
    return {"validator_id": validator_id, "stakers": [e.model_dump() for e in entries]}


@router.get("/stakes/{address}")
async def get_stakes(address: str, service: ValidatorService = Depends(get_validator_service)):
    """An account's stake per validator."""
    stakes = await service.fetch_staker_validator_data(address)
    return {"address": address, "stakes": [s.model_dump(mode="json") for s in stakes]}


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
