# carebell/services/escalation_engine.py
"""
Escalation Engine: the only writer of reminder scheduling state.

A reminder occurrence rings at ``date_time``. The recipient then has
``AUTO_MISS_WINDOW`` to answer before the ring counts as missed. The first
ring (stage 0) may be snoozed or missed once and rings again; the second
ring (stage 1) never reschedules and escalates to the caregiver on any
outcome other than done. The stage is always recomputed from the stored
``snooze_count + miss_count``.

Every transition runs under a per-reminder lock and is written as a
compare-and-set on the status / ring token it was decided on, so duplicate
callbacks and racing decisions collapse into exactly one applied change.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple
from uuid import uuid4

from carebell.core.errors import DispatchFailure, InvalidTransition, NotFound, StoreConflict
from carebell.models.enums import Decision, EngineState, ReminderLabel, ReminderStatus, Repeat
from carebell.models.reminder import DEFAULT_FOLLOW_UP_MINUTES, ReminderDoc
from carebell.repositories.reminder_store import ReminderStore
from carebell.services import messages
from carebell.services.dispatcher import NotificationDispatcher
from carebell.services.recurrence import RecurrenceExpander
from carebell.services.timer_service import Timers
from carebell.utils.dates import add_minutes, ensure_utc, now_utc

logger = logging.getLogger(__name__)

AUTO_MISS_WINDOW = timedelta(minutes=1)
ACTIONABLE_WINDOW = timedelta(minutes=2)

# fields that clear an in-flight ring
_RING_CLEARED = {"alarm_triggered_at": None, "miss_timer_handle": None, "notification_handle": None}

_EDITABLE = frozenset({"title", "description", "label", "date_time", "repeat", "follow_up_minutes"})
_SCHEDULE_FIELDS = frozenset({"date_time", "repeat", "follow_up_minutes"})
# may not be written as null
_REQUIRED = frozenset({"title", "label", "date_time", "repeat", "follow_up_minutes"})


@dataclass
class ReminderDraft:
    title: str
    date_time: datetime
    description: Optional[str] = None
    label: ReminderLabel = ReminderLabel.OTHER
    repeat: Repeat = Repeat.NONE
    follow_up_minutes: Optional[int] = None


@dataclass
class TransitionResult:
    applied: bool
    reminder_id: str
    event: str
    state: Optional[EngineState] = None
    reason: str = ""
    reminder: Optional[ReminderDoc] = None


After = Callable[[ReminderDoc, ReminderDoc], Awaitable[None]]


@dataclass
class _Step:
    """What a handler decided: the fields to write and the side effects to run after."""
    fields: Dict[str, Any] = field(default_factory=dict)
    after: Optional[After] = None
    reason: str = ""


class KeyedLock:
    """asyncio locks keyed by reminder id; an entry lives only while someone holds or waits."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class EscalationEngine:
    def __init__(
        self,
        store: ReminderStore,
        dispatcher: NotificationDispatcher,
        timers: Timers,
        *,
        clock: Callable[[], datetime] = now_utc,
        recurrence: Optional[RecurrenceExpander] = None,
        max_follow_up_minutes: int = 240,
        notify_caregiver_on_done: bool = True,
        notify_recipient_on_create: bool = True,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.timers = timers
        self._clock = clock
        self.recurrence = recurrence or RecurrenceExpander(store, clock)
        self.max_follow_up_minutes = max_follow_up_minutes
        self.notify_caregiver_on_done = notify_caregiver_on_done
        self.notify_recipient_on_create = notify_recipient_on_create

        self._locks = KeyedLock()
        # reminder id -> (token, timer handle); one live timer per reminder
        self._live: Dict[str, Tuple[str, str]] = {}

    # ------------------------------------------------------------------
    # author-facing API
    # ------------------------------------------------------------------

    async def create_reminder(self, created_by: str, for_user: str, draft: ReminderDraft) -> ReminderDoc:
        now = self._clock()
        date_time = ensure_utc(draft.date_time)
        if not (draft.title or "").strip():
            raise ValueError("title is required")
        if date_time is None or date_time < now - ACTIONABLE_WINDOW:
            raise ValueError("date_time is in the past")
        follow_up = self._check_minutes(draft.follow_up_minutes or DEFAULT_FOLLOW_UP_MINUTES)

        doc = await self.store.create({
            "created_by": created_by,
            "for_user": for_user,
            "title": draft.title.strip(),
            "description": draft.description,
            "label": draft.label,
            "repeat": draft.repeat,
            "follow_up_minutes": follow_up,
            "date_time": date_time,
            "original_date_time": date_time,
        })
        logger.info(
            "reminder created for %s at %s", for_user, date_time.isoformat(),
            extra={"reminder_id": doc.id, "user_id": created_by},
        )
        self._arm_trigger(doc)
        if self.notify_recipient_on_create:
            await self._notify(messages.scheduled(doc))
        return doc

    async def edit_reminder(self, reminder_id: str, changes: Mapping[str, Any]) -> TransitionResult:
        unknown = set(changes) - _EDITABLE
        if unknown:
            raise ValueError(f"not editable: {sorted(unknown)}")
        nulls = sorted(k for k in _REQUIRED if k in changes and changes[k] is None)
        if nulls:
            raise ValueError(f"cannot be empty: {nulls}")

        changes = dict(changes)
        if "title" in changes:
            if not changes["title"].strip():
                raise ValueError("title is required")
            changes["title"] = changes["title"].strip()
        if "label" in changes:
            changes["label"] = ReminderLabel(changes["label"])
        if "repeat" in changes:
            changes["repeat"] = Repeat(changes["repeat"])
        if "follow_up_minutes" in changes:
            self._check_minutes(changes["follow_up_minutes"])
        if "date_time" in changes:
            changes["date_time"] = ensure_utc(changes["date_time"])
            if changes["date_time"] < self._clock() - ACTIONABLE_WINDOW:
                raise ValueError("date_time is in the past")

        def plan(doc: ReminderDoc, now: datetime) -> _Step:
            fields = dict(changes)
            if not _SCHEDULE_FIELDS.intersection(changes):
                return _Step(fields)
            if doc.status != ReminderStatus.PENDING or doc.is_ringing:
                # a ring in flight is answered or times out first
                raise InvalidTransition(doc.id, doc.state.value, "reschedule")
            if "date_time" not in changes:
                return _Step(fields)

            # counters stay: a moved second ring is still the last one
            fields["original_date_time"] = changes["date_time"]
            fields["snoozed_until"] = None

            async def after(old: ReminderDoc, new: ReminderDoc) -> None:
                self._arm_trigger(new)

            return _Step(fields, after)

        return await self._transition(reminder_id, "edit", plan)

    async def delete_reminder(self, reminder_id: str) -> TransitionResult:
        async with self._locks.hold(reminder_id):
            try:
                doc = await self.store.get(reminder_id)
            except NotFound:
                self._disarm(reminder_id)
                return self._noop(reminder_id, "delete", "not_found")

            # timer and notification go before the record, so nothing fires for a deleted reminder
            self._disarm(reminder_id)
            await self._cancel_ring(doc)
            try:
                await self.store.delete(reminder_id)
            except NotFound:
                return self._noop(reminder_id, "delete", "not_found")

        logger.info("reminder deleted", extra={"reminder_id": reminder_id, "user_id": doc.created_by})
        return TransitionResult(True, reminder_id, "delete", doc.state, reminder=doc)

    # ------------------------------------------------------------------
    # timer-driven events
    # ------------------------------------------------------------------

    async def on_trigger(self, reminder_id: str) -> TransitionResult:
        def plan(doc: ReminderDoc, now: datetime) -> _Step:
            if doc.status != ReminderStatus.PENDING:
                raise InvalidTransition(doc.id, doc.state.value, "trigger")
            if doc.is_ringing:
                raise InvalidTransition(doc.id, doc.state.value, "trigger")

            if now < doc.date_time:
                async def rearm(old: ReminderDoc, new: ReminderDoc) -> None:
                    self._arm_trigger(new)
                return _Step(after=rearm, reason="not_due")

            if now - doc.date_time >= ACTIONABLE_WINDOW:
                # discovered too late to ring (process was down): an unanswered ring
                logger.warning(
                    "trigger %ss late, counting as missed ring",
                    int((now - doc.date_time).total_seconds()),
                    extra={"reminder_id": doc.id},
                )
                return self._plan_unanswered(doc, now)

            return self._plan_ring(doc, now)

        return await self._transition(reminder_id, "trigger", plan)

    async def on_auto_miss(self, reminder_id: str, triggered_at: datetime) -> TransitionResult:
        triggered_at = ensure_utc(triggered_at)

        def plan(doc: ReminderDoc, now: datetime) -> _Step:
            if not doc.is_ringing or doc.alarm_triggered_at != triggered_at:
                # resolved already, or a timeout left over from an earlier ring
                raise InvalidTransition(doc.id, doc.state.value, "auto_miss")

            deadline = doc.alarm_triggered_at + AUTO_MISS_WINDOW
            if now < deadline:
                async def rearm(old: ReminderDoc, new: ReminderDoc) -> None:
                    self._arm_auto_miss(new)
                return _Step(after=rearm, reason="not_due")

            return self._plan_unanswered(doc, now)

        return await self._transition(reminder_id, "auto_miss", plan)

    # ------------------------------------------------------------------
    # recipient decisions
    # ------------------------------------------------------------------

    async def report_decision(
        self,
        reminder_id: str,
        decision: Decision,
        minutes: Optional[int] = None,
    ) -> TransitionResult:
        decision = Decision(decision)
        if minutes is not None:
            self._check_minutes(minutes)

        def plan(doc: ReminderDoc, now: datetime) -> _Step:
            if doc.status != ReminderStatus.PENDING:
                raise InvalidTransition(doc.id, doc.state.value, decision.value)

            if decision == Decision.DONE:
                return self._plan_done(doc, now)

            if not doc.is_ringing:
                raise InvalidTransition(doc.id, doc.state.value, decision.value)

            if decision == Decision.DISMISS:
                if doc.ring_stage < 1:
                    raise InvalidTransition(doc.id, doc.state.value, decision.value)
                return self._plan_final(doc, now, "dismissed", miss_count=doc.miss_count + 1)

            # snooze and in-progress share mechanics and the ring-stage counter
            m = minutes or doc.follow_up_minutes
            if doc.ring_stage >= 1:
                return self._plan_final(doc, now, decision.value, snooze_count=doc.snooze_count + 1)

            return self._plan_reschedule(
                doc, now, m,
                messages.caregiver_snoozed(doc, m, decision.value),
                snooze_count=doc.snooze_count + 1,
                snoozed_until=add_minutes(now, m),
            )

        return await self._transition(reminder_id, decision.value, plan)

    # ------------------------------------------------------------------
    # restart / reconcile
    # ------------------------------------------------------------------

    async def resume(self) -> int:
        """Re-derives every timer from the stored reminders. Returns how many were armed."""
        armed = 0
        for doc in await self.store.list_pending():
            await self._rearm_from_store(doc)
            armed += 1
        logger.info("resumed %s pending reminders", armed)
        return armed

    async def reconcile(self) -> Dict[str, int]:
        """Periodic repair: timers lost to races or errors, and missing recurrence successors."""
        rearmed = 0
        for doc in await self.store.list_pending():
            if doc.id not in self._live:
                await self._rearm_from_store(doc)
                rearmed += 1

        expanded = 0
        for doc in await self.store.list_done_repeating_without_successor():
            async with self._locks.hold(doc.id):
                try:
                    new = await self.recurrence.expand(await self.store.get(doc.id))
                except NotFound:
                    continue
            if new is not None:
                self._arm_trigger(new)
                expanded += 1

        if rearmed or expanded:
            logger.info("reconcile rearmed=%s expanded=%s", rearmed, expanded)
        return {"rearmed": rearmed, "expanded": expanded}

    def live_timers(self) -> int:
        return len(self._live)

    def has_live_timer(self, reminder_id: str) -> bool:
        return reminder_id in self._live

    # ------------------------------------------------------------------
    # transition plans
    # ------------------------------------------------------------------

    def _plan_ring(self, doc: ReminderDoc, now: datetime) -> _Step:
        async def after(old: ReminderDoc, new: ReminderDoc) -> None:
            # a new ring replaces whatever the previous one left on screen
            await self._cancel_notification(old.notification_handle)
            handle = await self._notify(messages.ring(new))
            miss_handle = self._arm_auto_miss(new)
            try:
                await self.store.update(
                    new.id,
                    {"notification_handle": handle, "miss_timer_handle": miss_handle},
                    expect_status=ReminderStatus.PENDING,
                    expect_triggered_at=new.alarm_triggered_at,
                )
            except (NotFound, StoreConflict) as e:
                logger.info("ring resolved before handles were stored: %s", e, extra={"reminder_id": new.id})
            logger.info(
                "ring %s", new.ring_stage + 1,
                extra={"reminder_id": new.id, "user_id": new.for_user},
            )

        return _Step({"alarm_triggered_at": now}, after)

    def _plan_unanswered(self, doc: ReminderDoc, now: datetime) -> _Step:
        if doc.ring_stage >= 1:
            return self._plan_final(doc, now, "missed", miss_count=doc.miss_count + 1)
        m = doc.follow_up_minutes
        return self._plan_reschedule(
            doc, now, m, messages.caregiver_missed(doc, m), miss_count=doc.miss_count + 1
        )

    def _plan_reschedule(
        self, doc: ReminderDoc, now: datetime, minutes: int, notice: messages.Message, **counters: Any
    ) -> _Step:
        fields = dict(_RING_CLEARED)
        fields.update(counters)
        fields["date_time"] = add_minutes(now, minutes)

        async def after(old: ReminderDoc, new: ReminderDoc) -> None:
            await self._cancel_ring(old)
            self._arm_trigger(new)
            await self._notify(notice)

        return _Step(fields, after)

    def _plan_final(self, doc: ReminderDoc, now: datetime, outcome: str, **counters: Any) -> _Step:
        fields = dict(_RING_CLEARED)
        fields.update(counters)
        if outcome == "missed":
            fields["status"] = ReminderStatus.MISSED
        elif outcome == "dismissed":
            fields["status"] = ReminderStatus.MISSED
            fields["dismissed"] = True
        else:
            fields["status"] = ReminderStatus.SNOOZED

        async def after(old: ReminderDoc, new: ReminderDoc) -> None:
            self._disarm(new.id)
            await self._cancel_ring(old)
            try:
                await self.store.bump_missed(new.for_user)
            except Exception:
                logger.exception("bump_missed failed", extra={"reminder_id": new.id, "user_id": new.for_user})
            await self._notify(messages.caregiver_check_on(old, outcome))
            logger.info("escalated: %s", outcome, extra={"reminder_id": new.id, "user_id": new.for_user})

        return _Step(fields, after)

    def _plan_done(self, doc: ReminderDoc, now: datetime) -> _Step:
        fields = dict(_RING_CLEARED)
        fields.update(status=ReminderStatus.DONE, completed_at=now)

        async def after(old: ReminderDoc, new: ReminderDoc) -> None:
            self._disarm(new.id)
            await self._cancel_ring(old)
            successor = None
            if new.is_repeating:
                try:
                    successor = await self.recurrence.expand(new)
                except Exception:
                    # reconcile retries the expansion from the stored state
                    logger.exception("recurrence expansion failed", extra={"reminder_id": new.id})
            if successor is not None:
                self._arm_trigger(successor)
            if self.notify_caregiver_on_done:
                next_at = successor.date_time.isoformat() if successor else None
                await self._notify(messages.caregiver_done(old, next_at))

        return _Step(fields, after)

    # ------------------------------------------------------------------
    # the read -> decide -> write loop
    # ------------------------------------------------------------------

    async def _transition(
        self,
        reminder_id: str,
        event: str,
        plan: Callable[[ReminderDoc, datetime], _Step],
    ) -> TransitionResult:
        async with self._locks.hold(reminder_id):
            for attempt in (1, 2):
                try:
                    doc = await self.store.get(reminder_id)
                except NotFound:
                    return self._noop(reminder_id, event, "not_found")

                now = self._clock()
                try:
                    step = plan(doc, now)
                except InvalidTransition as e:
                    logger.info("ignored: %s", e, extra={"reminder_id": reminder_id})
                    return self._noop(reminder_id, event, "invalid_transition", doc)

                if not step.fields:
                    if step.after:
                        await step.after(doc, doc)
                    return self._noop(reminder_id, event, step.reason or "no_change", doc)

                try:
                    new = await self.store.update(
                        reminder_id,
                        step.fields,
                        expect_status=doc.status,
                        expect_triggered_at=doc.alarm_triggered_at,
                    )
                except NotFound:
                    return self._noop(reminder_id, event, "not_found")
                except StoreConflict as e:
                    if attempt == 1:
                        logger.info("conflict, re-reading: %s", e, extra={"reminder_id": reminder_id})
                        continue
                    # the next reconcile tick starts from whatever the store holds
                    logger.warning("conflict again, dropping %s: %s", event, e, extra={"reminder_id": reminder_id})
                    return self._noop(reminder_id, event, "conflict", doc)

                if step.after:
                    await step.after(doc, new)
                logger.debug(
                    "%s: %s -> %s", event, doc.state.value, new.state.value,
                    extra={"reminder_id": reminder_id},
                )
                return TransitionResult(True, reminder_id, event, new.state, step.reason, new)

        return self._noop(reminder_id, event, "conflict")  # unreachable, keeps type checkers quiet

    @staticmethod
    def _noop(reminder_id: str, event: str, reason: str, doc: Optional[ReminderDoc] = None) -> TransitionResult:
        return TransitionResult(
            False, reminder_id, event,
            state=doc.state if doc else None,
            reason=reason,
            reminder=doc,
        )

    # ------------------------------------------------------------------
    # timers
    # ------------------------------------------------------------------

    def _arm(self, reminder_id: str, at: datetime, kind: str, *args: Any) -> str:
        self._disarm(reminder_id)
        token = uuid4().hex
        handle = self.timers.schedule(at, self._fire, token, kind, reminder_id, *args, name=f"{kind}:{reminder_id}")
        self._live[reminder_id] = (token, handle)
        return handle

    def _arm_trigger(self, doc: ReminderDoc) -> str:
        return self._arm(doc.id, doc.date_time, "trigger")

    def _arm_auto_miss(self, doc: ReminderDoc) -> str:
        return self._arm(doc.id, doc.alarm_triggered_at + AUTO_MISS_WINDOW, "auto_miss", doc.alarm_triggered_at)

    def _disarm(self, reminder_id: str) -> None:
        live = self._live.pop(reminder_id, None)
        if live is not None:
            self.timers.cancel(live[1])

    async def _fire(self, token: str, kind: str, reminder_id: str, *args: Any) -> None:
        live = self._live.get(reminder_id)
        if live is not None and live[0] == token:
            del self._live[reminder_id]
        try:
            if kind == "trigger":
                await self.on_trigger(reminder_id)
            else:
                await self.on_auto_miss(reminder_id, *args)
        except Exception:
            logger.exception("%s handler failed", kind, extra={"reminder_id": reminder_id})

    async def _rearm_from_store(self, doc: ReminderDoc) -> None:
        if not doc.is_ringing:
            self._arm_trigger(doc)
            return
        handle = self._arm_auto_miss(doc)
        try:
            await self.store.update(
                doc.id,
                {"miss_timer_handle": handle},
                expect_status=ReminderStatus.PENDING,
                expect_triggered_at=doc.alarm_triggered_at,
            )
        except (NotFound, StoreConflict):
            # moved on meanwhile; the fresh timer will find nothing to do
            pass

    # ------------------------------------------------------------------
    # notifications
    # ------------------------------------------------------------------

    async def _notify(self, msg: messages.Message) -> Optional[str]:
        try:
            return await self.dispatcher.send(msg.recipient, msg.title, msg.body, msg.metadata, self._clock())
        except DispatchFailure as e:
            logger.warning(
                "dispatch of %s failed: %s", msg.kind.value, e,
                extra={"reminder_id": msg.metadata.get("reminder_id", "-"), "user_id": msg.recipient},
            )
        except Exception:
            logger.exception(
                "dispatch of %s crashed", msg.kind.value,
                extra={"reminder_id": msg.metadata.get("reminder_id", "-"), "user_id": msg.recipient},
            )
        return None

    async def _cancel_notification(self, handle: Optional[str]) -> None:
        if not handle:
            return
        try:
            await self.dispatcher.cancel(handle)
        except Exception:
            logger.exception("notification cancel failed for %s", handle)

    async def _cancel_ring(self, doc: ReminderDoc) -> None:
        """Drops what a ring left behind: the persisted auto-miss timer and the live notification."""
        if doc.miss_timer_handle:
            self.timers.cancel(doc.miss_timer_handle)
        await self._cancel_notification(doc.notification_handle)

    def _check_minutes(self, minutes: int) -> int:
        if not isinstance(minutes, int) or isinstance(minutes, bool):
            raise ValueError("minutes must be an integer")
        if not 1 <= minutes <= self.max_follow_up_minutes:
            raise ValueError(f"minutes must be within 1..{self.max_follow_up_minutes}")
        return minutes
