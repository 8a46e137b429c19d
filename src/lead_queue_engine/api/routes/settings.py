"""Per-team distribution settings."""

from fastapi import APIRouter, Depends

from ...distribution.distributor import LeadDistributor
from ..dependencies import get_distributor
from ..middleware.auth import verify_admin
from ..schemas import ERROR_RESPONSES, SettingsRequest, SettingsResponse

router = APIRouter(prefix="/v1/settings", tags=["settings"], responses=ERROR_RESPONSES)


@router.get("/{team_id}", response_model=SettingsResponse)
def get_settings(team_id: str, distributor: LeadDistributor = Depends(get_distributor)):
    return SettingsResponse.from_settings(distributor.get_distribution_settings(team_id))


@router.put("/{team_id}", response_model=SettingsResponse, dependencies=[Depends(verify_admin)])
def put_settings(team_id: str, body: SettingsRequest, distributor: LeadDistributor = Depends(get_distributor)):
    """Applies to leads created from now on."""
    settings = distributor.set_distribution_settings(team_id, body.mode, body.reservation_ttl_seconds)
    return SettingsResponse.from_settings(settings)
