# carebell/scripts/simulate_decision.py
"""
Manual check of the alarm flow against a running instance: creates a
reminder due now, waits for it to ring and answers it.
Run inside the container:
    docker compose exec -T app python carebell/scripts/simulate_decision.py snooze 10
"""

import json
import sys
import time
import urllib.error
import urllib.request
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# inside the container hit IPv4, ::1 may not be bound
BASE_URL = "http://127.0.0.1:8080"

CAREGIVER = "caregiver-demo"
RECIPIENT = "recipient-demo"


def call(method: str, path: str, payload: Optional[Dict[str, Any]] = None):
    body = json.dumps(payload).encode() if payload is not None else None
    req = urllib.request.Request(
        f"{BASE_URL}{path}",
        data=body,
        method=method,
        headers={"content-type": "application/json"},
    )
    try:
        with urllib.request.urlopen(req, timeout=10) as resp:
            raw = resp.read().decode()
            return resp.status, (json.loads(raw) if raw else None)
    except urllib.error.HTTPError as e:
        return e.code, e.read().decode()


def main():
    decision = sys.argv[1] if len(sys.argv) > 1 else "done"
    minutes = int(sys.argv[2]) if len(sys.argv) > 2 else None

    status, doc = call("POST", "/reminders", {
        "created_by": CAREGIVER,
        "for_user": RECIPIENT,
        "title": "Demo pill",
        "date_time": datetime.now(timezone.utc).isoformat(),
        "label": "medicine",
    })
    print("[create]", status, doc)
    if status != 201:
        return
    rid = doc["id"]

    # the trigger timer fires right away, give it a moment
    for _ in range(10):
        status, ringing = call("GET", f"/reminders/{rid}/ringing")
        if status == 200 and ringing["reminder"]["state"].startswith("ringing"):
            print("[ringing]", ringing["reminder"]["state"], ringing["decisions"])
            break
        time.sleep(0.5)
    else:
        print("[ringing] reminder never rang")
        return

    status, res = call("POST", f"/reminders/{rid}/decision", {"decision": decision, "minutes": minutes})
    print("[decision]", status, res)

    status, missed = call("GET", f"/users/{RECIPIENT}/missed")
    print("[missed]", status, missed)


if __name__ == "__main__":
    main()
