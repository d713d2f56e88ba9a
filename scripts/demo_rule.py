from datetime import datetime, timezone
import json
import sys

from config import ProcessorConfig
from models.email import Email
from models.rules import Rule
from rules.rules_processor import RuleProcessor


def make_demo_email():
    # Matches the "Vendor disk alerts" sample rule
    return Email(
        id='demo-1',
        thread_id='demo-thread',
        from_address='monitor@vendor.com',
        subject='ALERT: disk full',
        body_text='Volume D: on FILESRV01 is 98% full.',
        received_at=datetime.now(timezone.utc),
        is_read=False
    )


def run_demo(rules_file='rules/sample_rules.json'):
    with open(rules_file, 'r') as f:
        rules = sorted((Rule.from_record(r) for r in json.load(f)), key=lambda r: r.priority)
    config = ProcessorConfig(mailbox='it-alerts@example.org', dry_run=True, verbose=True)
    # Dry-run prints the actions but needs no mailbox or event log
    processor = RuleProcessor(config)
    processor.process_emails([make_demo_email()], rules)


if __name__ == '__main__':
    try:
        run_demo()
    except Exception as e:
        print('Demo failed:', e)
        sys.exit(1)
