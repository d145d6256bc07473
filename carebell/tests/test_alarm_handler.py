import asyncio
from types import SimpleNamespace

from carebell.handlers.alarm import on_alarm_button
from carebell.keyboards.alarm import alarm_data
from carebell.models.enums import Decision, EngineState

from conftest import RECIPIENT


class FakeCall:
    def __init__(self, data, user_id):
        self.data = data
        self.from_user = SimpleNamespace(id=user_id)
        self.answers = []

    async def answer(self, text=None, show_alert=False):
        self.answers.append((text, show_alert))


def _ringing(env):
    async def go():
        doc = await env.create()
        await env.timers.advance(minutes=5)
        return doc

    return asyncio.run(go())


def test_recipient_button_reports_decision(env):
    doc = _ringing(env)
    # ids are compared as text: telegram hands out ints, the store keeps strings
    call = FakeCall(alarm_data(Decision.SNOOZE, doc.id, 30), user_id=RECIPIENT)

    asyncio.run(on_alarm_button(call, env.alarm))

    updated = asyncio.run(env.get(doc.id))
    assert updated.snooze_count == 1
    assert updated.state == EngineState.SCHEDULED
    assert call.answers == [("💤 Snoozed", False)]


def test_someone_else_cannot_answer(env):
    doc = _ringing(env)
    call = FakeCall(alarm_data(Decision.DONE, doc.id), user_id="intruder")

    asyncio.run(on_alarm_button(call, env.alarm))

    assert asyncio.run(env.get(doc.id)).state == EngineState.RINGING_1
    assert call.answers[0][1] is True


def test_expired_alarm_is_refused(env):
    doc = _ringing(env)
    env.clock.advance(minutes=3)
    call = FakeCall(alarm_data(Decision.DONE, doc.id), user_id=RECIPIENT)

    asyncio.run(on_alarm_button(call, env.alarm))

    assert call.answers == [("This reminder is no longer active.", True)]


def test_garbage_callback_data(env):
    call = FakeCall("alarm:???", user_id=RECIPIENT)
    asyncio.run(on_alarm_button(call, env.alarm))
    assert call.answers == [("Unknown action", True)]
