import argparse
import sys

from clients.event_log import WindowsEventLog
from clients.gmail_client import GmailClient
from config import CREDENTIALS_FILE, DEFAULT_DB_NAME, DEFAULT_FOLDER, DEFAULT_LIMIT, TOKEN_FILE, ProcessorConfig
from data.data_manager import RuleStore
from models.errors import MailHandlerError
from rules.rules_processor import RuleProcessor


def ask_confirmation(prompt: str) -> bool:
    answer = input(f"{prompt}? (y/N): ")
    return answer.strip().lower() == 'y'


def run_mail_handler(config: ProcessorConfig, confirm=None) -> int:
    """
    Main entry point for one run.
    1. Open the rule store.
    2. Connect to the mailbox and, unless dry-running, the event log.
    3. Run the RuleProcessor.
    Returns the process exit code.
    """
    rule_store = None
    try:
        rule_store = RuleStore(config.db_name)
        gmail_client = GmailClient(config)
        event_sink = None if config.dry_run else WindowsEventLog()

        processor = RuleProcessor(
            config,
            rule_store=rule_store,
            mail_client=gmail_client,
            event_sink=event_sink,
            confirm=confirm
        )
        processor.run()
    except MailHandlerError as e:
        print(f"Run aborted: {e}")
        return 1
    finally:
        if rule_store:
            rule_store.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Turn matching mailbox messages into event log entries')
    parser.add_argument('--mailbox', required=True, help='Address of the shared mailbox to scan')
    parser.add_argument('--folder', default=DEFAULT_FOLDER, help='Folder (label) to scan')
    parser.add_argument('--limit', type=int, default=DEFAULT_LIMIT, help='Maximum number of messages to fetch')
    parser.add_argument('--db', default=DEFAULT_DB_NAME, help='Path to the rule database')
    parser.add_argument('--dry-run', action='store_true', help='Match only; do not write events or touch the mailbox')
    parser.add_argument('--log-only', action='store_true', help='Write events but leave messages untagged, unread and in place')
    parser.add_argument('--verbose', action='store_true', help='Show per-email rule evaluations')
    parser.add_argument('--rule', type=str, help='Run only rules whose name contains this string (case-insensitive)')
    parser.add_argument('--confirm', action='store_true', help='Ask before tagging, marking read or moving each message')
    parser.add_argument('--credentials', default=CREDENTIALS_FILE, help='OAuth client secrets file')
    parser.add_argument('--token', default=TOKEN_FILE, help='Cached OAuth token file')
    parser.add_argument('--service-account', help='Service account key file with domain-wide delegation')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = ProcessorConfig(
            mailbox=args.mailbox,
            folder=args.folder,
            limit=args.limit,
            db_name=args.db,
            dry_run=args.dry_run,
            log_only=args.log_only,
            verbose=args.verbose,
            rule_name=args.rule,
            credentials_file=args.credentials,
            token_file=args.token,
            service_account_file=args.service_account,
        )
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        return 2
    return run_mail_handler(config, confirm=ask_confirmation if args.confirm else None)


if __name__ == '__main__':
    sys.exit(main())
