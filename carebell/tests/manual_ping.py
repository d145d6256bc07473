import json
import urllib.request, urllib.error

BASE = "http://localhost:8080"


def ping_health():
    r = urllib.request.urlopen(f"{BASE}/health")
    print("health:", r.status, r.read().decode()[:120])


def ping_ringing():
    # unknown reminder: the alarm screen gets nothing to show
    r = urllib.request.urlopen(f"{BASE}/reminders/does-not-exist/ringing")
    print("ringing:", r.status)


def ping_decision():
    data = json.dumps({"decision": "done"}).encode()
    req = urllib.request.Request(
        f"{BASE}/reminders/does-not-exist/decision",
        data=data,
        method="POST",
        headers={"content-type": "application/json"},
    )
    try:
        r = urllib.request.urlopen(req)
        print("decision:", r.status, r.read().decode()[:120])
    except urllib.error.HTTPError as e:
        print("decision:", e.code, e.read().decode()[:120])


if __name__ == "__main__":
    ping_health()
    ping_ringing()
    ping_decision()
