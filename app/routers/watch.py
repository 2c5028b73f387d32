from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from config.settings import ALLOWED_REFRESH_INTERVALS, NOTIFY_BEFORE_CHOICES
from models.schema import SubDivision
from upstream.gateway import UpstreamGateway, get_gateway
from watch.selection import filter_divisions
from watch.session import WatchSession, get_watch_session

router = APIRouter()


class ScheduleRequest(BaseModel):
    auto_refresh: Optional[bool] = None
    interval_s: Optional[int] = None

    @field_validator("interval_s")
    @classmethod
    def _allowed_interval(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in ALLOWED_REFRESH_INTERVALS:
            raise ValueError(f"interval_s must be one of {ALLOWED_REFRESH_INTERVALS}")
        return v


class TargetRequest(BaseModel):
    target_clinic_code: Optional[str] = Field(default=None, max_length=32)
    ticket_number: Optional[str] = Field(default=None, max_length=16)
    notify_before: Optional[int] = None

    @field_validator("notify_before")
    @classmethod
    def _allowed_notify_before(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in NOTIFY_BEFORE_CHOICES:
            raise ValueError(f"notify_before must be one of {NOTIFY_BEFORE_CHOICES}")
        return v


@router.get("/divisions")
async def list_divisions(q: str = "", gateway: UpstreamGateway = Depends(get_gateway)):
    divisions = await asyncio.to_thread(gateway.fetch_divisions)
    return {"ok": True, "items": [d.model_dump(by_alias=True) for d in filter_divisions(divisions, q)]}


@router.post("/select")
async def select_sub_division(body: SubDivision, session: WatchSession = Depends(get_watch_session)):
    await session.select(body)
    return session.view()


@router.post("/refresh")
async def refresh(session: WatchSession = Depends(get_watch_session)):
    if session.selected is None:
        raise HTTPException(status_code=409, detail="no_sub_division_selected")
    applied = await session.refresh()
    return {"ok": applied, "state": session.view()}


@router.put("/schedule")
async def update_schedule(body: ScheduleRequest, session: WatchSession = Depends(get_watch_session)):
    await session.set_schedule(auto_refresh=body.auto_refresh, interval_s=body.interval_s)
    return session.view()


@router.put("/target")
async def update_target(body: TargetRequest, session: WatchSession = Depends(get_watch_session)):
    session.set_target(
        target_clinic_code=body.target_clinic_code,
        ticket_number=body.ticket_number,
        notify_before=body.notify_before,
    )
    return session.view()


@router.post("/clinics/{clinic_code}/watch")
async def watch_clinic(clinic_code: str, session: WatchSession = Depends(get_watch_session)):
    await session.watch_clinic(clinic_code)
    return session.view()


@router.post("/notifications/toggle")
async def toggle_notifications(session: WatchSession = Depends(get_watch_session)):
    enabled = await session.toggle_notifications()
    return {"ok": True, "notifications_enabled": enabled, "permission": session.notifier.permission}


@router.get("/state")
async def state(session: WatchSession = Depends(get_watch_session)):
    return session.view()
