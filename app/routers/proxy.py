from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from upstream.gateway import UpstreamGateway, get_gateway

router = APIRouter()

# Upstream key casing is kept on the wire so existing dashboards keep working.


@router.get("/RegistrationDivision")
def registration_division(gateway: UpstreamGateway = Depends(get_gateway)) -> List[Dict[str, Any]]:
    return [d.model_dump(by_alias=True) for d in gateway.fetch_divisions()]


@router.get("/AppointmentProgress")
def appointment_progress(
    division_code: str = Query(..., alias="DivisionCode", min_length=1, max_length=32),
    gateway: UpstreamGateway = Depends(get_gateway),
) -> List[Dict[str, Any]]:
    return [row.to_upstream() for row in gateway.fetch_progress(division_code)]
