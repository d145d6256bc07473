# carebell/web/routes.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from carebell.models.enums import Decision, ReminderLabel, ReminderStatus, Repeat
from carebell.services.alarm_presentation import AlarmPresenter, ReminderFilters
from carebell.services.escalation_engine import EscalationEngine, ReminderDraft, TransitionResult

router = APIRouter()


# ---------- schemas ----------

class ReminderIn(BaseModel):
    created_by: str
    for_user: str
    title: str = Field(min_length=1, max_length=200)
    date_time: datetime
    description: Optional[str] = None
    label: ReminderLabel = ReminderLabel.OTHER
    repeat: Repeat = Repeat.NONE
    follow_up_minutes: Optional[int] = Field(default=None, ge=1)


class ReminderPatch(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    label: Optional[ReminderLabel] = None
    date_time: Optional[datetime] = None
    repeat: Optional[Repeat] = None
    follow_up_minutes: Optional[int] = Field(default=None, ge=1)


class DecisionIn(BaseModel):
    decision: Decision
    minutes: Optional[int] = Field(default=None, ge=1)


# ---------- deps ----------

def get_engine(request: Request) -> EscalationEngine:
    return request.app.state.container.engine


def get_alarm(request: Request) -> AlarmPresenter:
    return request.app.state.container.alarm


def _result(res: TransitionResult) -> dict:
    return {
        "ok": res.applied,
        "event": res.event,
        "state": res.state.value if res.state else None,
        "reason": res.reason,
        "reminder": res.reminder.to_dict() if res.reminder else None,
    }


# ---------- routes ----------

@router.get("/health")
async def health():
    return {"status": "ok"}


@router.post("/reminders", status_code=201)
async def create_reminder(body: ReminderIn, engine: EscalationEngine = Depends(get_engine)):
    draft = ReminderDraft(
        title=body.title,
        date_time=body.date_time,
        description=body.description,
        label=body.label,
        repeat=body.repeat,
        follow_up_minutes=body.follow_up_minutes,
    )
    doc = await engine.create_reminder(body.created_by, body.for_user, draft)
    return doc.to_dict()


@router.get("/reminders")
async def list_reminders(
    user_id: str,
    view: Literal["author", "recipient"] = "author",
    q: str = "",
    label: Optional[ReminderLabel] = None,
    status: Optional[ReminderStatus] = None,
    alarm: AlarmPresenter = Depends(get_alarm),
):
    docs = await alarm.list_reminders(
        user_id, view == "author", ReminderFilters(search_query=q, label=label, status=status)
    )
    return {"items": [d.to_dict() for d in docs]}


@router.get("/reminders/{reminder_id}")
async def get_reminder(reminder_id: str, engine: EscalationEngine = Depends(get_engine)):
    # NotFound becomes a 404 in the app's error handler
    doc = await engine.store.get(reminder_id)
    return doc.to_dict()


@router.patch("/reminders/{reminder_id}")
async def edit_reminder(reminder_id: str, body: ReminderPatch, engine: EscalationEngine = Depends(get_engine)):
    changes = body.model_dump(exclude_unset=True)
    res = await engine.edit_reminder(reminder_id, changes)
    return _status_for(res)


@router.delete("/reminders/{reminder_id}")
async def delete_reminder(reminder_id: str, engine: EscalationEngine = Depends(get_engine)):
    res = await engine.delete_reminder(reminder_id)
    return _status_for(res)


@router.get("/reminders/{reminder_id}/ringing")
async def ringing(reminder_id: str, alarm: AlarmPresenter = Depends(get_alarm)):
    doc = await alarm.get_ringing_reminder(reminder_id)
    if doc is None:
        return Response(status_code=204)
    return {
        "reminder": doc.to_dict(),
        "decisions": [d.value for d in alarm.available_decisions(doc)],
    }


@router.post("/reminders/{reminder_id}/decision")
async def report_decision(reminder_id: str, body: DecisionIn, alarm: AlarmPresenter = Depends(get_alarm)):
    res = await alarm.report_decision(reminder_id, body.decision, body.minutes)
    return _status_for(res)


@router.get("/users/{user_id}/reminders/stream")
async def stream_reminders(
    user_id: str,
    request: Request,
    view: Literal["author", "recipient"] = "recipient",
    limit: Optional[int] = Query(default=None, ge=1),
    engine: EscalationEngine = Depends(get_engine),
):
    """Newline-delimited JSON: the whole list once, then again after every change."""

    async def _lines():
        sent = 0
        stream = engine.store.subscribe(user_id, view == "author")
        try:
            async for docs in stream:
                yield json.dumps({"items": [d.to_dict() for d in docs]}) + "\n"
                sent += 1
                if (limit and sent >= limit) or await request.is_disconnected():
                    break
        finally:
            await stream.aclose()

    return StreamingResponse(_lines(), media_type="application/x-ndjson")


@router.get("/users/{user_id}/missed")
async def missed_count(user_id: str, alarm: AlarmPresenter = Depends(get_alarm)):
    return {"user_id": user_id, "missed": await alarm.missed_count(user_id)}


@router.delete("/users/{user_id}/missed")
async def reset_missed(user_id: str, alarm: AlarmPresenter = Depends(get_alarm)):
    await alarm.reset_missed(user_id)
    return {"user_id": user_id, "missed": 0}


def _status_for(res: TransitionResult) -> JSONResponse:
    if res.applied:
        code = 200
    elif res.reason == "not_found":
        code = 404
    else:
        code = 409
    return JSONResponse(_result(res), status_code=code)
