from carebell.keyboards.alarm import alarm_data, alarm_keyboard, parse_alarm_data
from carebell.models.enums import Decision
from carebell.repositories.reminder_store import new_reminder_id


def _callback_data(markup):
    return [b.callback_data for row in markup.inline_keyboard for b in row]


def test_first_ring_keyboard_has_no_dismiss():
    rid = new_reminder_id()
    data = _callback_data(alarm_keyboard(rid))
    decisions = [parse_alarm_data(d).decision for d in data]
    assert Decision.DISMISS not in decisions
    assert decisions.count(Decision.SNOOZE) == 2
    # telegram limit
    assert all(len(d.encode()) <= 64 for d in data)


def test_last_ring_keyboard_offers_dismiss():
    data = _callback_data(alarm_keyboard(new_reminder_id(), final=True))
    assert parse_alarm_data(data[-1]).decision == Decision.DISMISS


def test_parse_alarm_data():
    parsed = parse_alarm_data(alarm_data(Decision.SNOOZE, "abc", 30))
    assert parsed.decision == Decision.SNOOZE
    assert parsed.reminder_id == "abc"
    assert parsed.minutes == 30

    assert parse_alarm_data(alarm_data(Decision.DONE, "abc")).minutes is None
    assert parse_alarm_data("tariff:m1") is None
    assert parse_alarm_data("alarm:explode:abc:0") is None
    assert parse_alarm_data("alarm:done:abc:x") is None
