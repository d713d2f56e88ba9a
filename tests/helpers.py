import sys
import pathlib
from datetime import datetime, timedelta, timezone

# Ensure the project root is on sys.path so tests can import local packages
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from models.email import Email
from models.rules import Rule


def make_email(id="msg1", from_addr="x@vendor.com", subject="ALERT: disk full", body="Volume D: is full",
               minutes_ago=0, is_read=False, label_ids=("INBOX", "UNREAD")):
    received_at = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
    return Email(id=id, thread_id="t-" + id, from_address=from_addr, subject=subject, body_text=body,
                 received_at=received_at, is_read=is_read, label_ids=tuple(label_ids))


def make_record(**overrides):
    record = {
        "id": 1,
        "name": "Vendor alerts",
        "enabled": True,
        "priority": 1,
        "mailbox": "alerts@example.org",
        "folder": "INBOX",
        "destination_folder": None,
        "sender_pattern": r".*@vendor\.com",
        "subject_pattern": "ALERT",
        "body_pattern": ".*",
        "log_host": ".",
        "log_name": "MailAlerts",
        "log_source": "Vendor",
        "event_id": 1001,
        "severity": "Warning",
        "message": None,
        "dynamic": False,
        "dynamic_source": None,
        "processed_marker": "[DONE] ",
        "case_sensitive": False,
    }
    record.update(overrides)
    return record


def make_rule(**overrides) -> Rule:
    return Rule.from_record(make_record(**overrides))
