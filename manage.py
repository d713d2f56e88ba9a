#!/usr/bin/env python3
import argparse
import sys

from config import DEFAULT_DB_NAME
from data.data_manager import RuleStore
from models.email import Email
from models.errors import MailHandlerError
from rules.actions import ActionInvoker
from rules.matcher import evaluate


def cmd_init_db(db, args):
    print(f"Rule table ready in '{db.db_name}'.")


def cmd_list_rules(db, args):
    rules = db.load_rules(mailbox=args.mailbox, folder=args.folder, include_disabled=args.all)
    if not rules:
        print('No rules found.')
        return
    for r in rules:
        state = 'enabled' if r.enabled else 'disabled'
        kind = f"dynamic({r.message.source})" if r.is_dynamic else 'static'
        move = f" -> {r.destination_folder}" if r.destination_folder else ''
        print(f"[{r.id}] p{r.priority} {r.name} ({state}) {r.mailbox}/{r.folder}{move} "
              f"=> {r.target} event {r.event_id} {r.severity.value} {kind}")


def cmd_import_rules(db, args):
    ids = db.import_rules(args.file)
    print(f"Imported {len(ids)} rule(s): {', '.join(str(i) for i in ids)}")


def cmd_enable(db, args):
    if db.set_enabled(args.id, True):
        print(f"Rule {args.id} enabled.")
    else:
        print(f"Rule {args.id} not found.")


def cmd_disable(db, args):
    if db.set_enabled(args.id, False):
        print(f"Rule {args.id} disabled.")
    else:
        print(f"Rule {args.id} not found.")


def cmd_delete(db, args):
    if not args.yes:
        confirm = input(f"Delete rule {args.id}? This cannot be undone. (y/N): ")
        if confirm.lower() != 'y':
            print('Canceled')
            return
    if db.delete_rule(args.id):
        print(f"Rule {args.id} deleted.")
    else:
        print(f"Rule {args.id} not found.")


def cmd_test_rule(db, args):
    """Evaluates one rule against a hand-written message; no mailbox or event log access."""
    rule = next((r for r in db.load_rules(include_disabled=True) if r.id == args.id), None)
    if rule is None:
        print(f"Rule {args.id} not found.")
        return
    email = Email(
        id='test',
        thread_id='test',
        from_address=args.sender,
        subject=args.subject,
        body_text=args.body,
        received_at=None,
        is_read=False
    )
    results = evaluate(email, rule)
    for name, result in results.items():
        print(f"  {name}: {result}")
    if all(results.values()):
        text, truncated = ActionInvoker(None).compute_message(rule, email)
        print(f"MATCH -> event {rule.event_id} on {rule.target}: {text!r}" + (' (truncated)' if truncated else ''))
    else:
        print('NO MATCH')


def main(argv=None):
    p = argparse.ArgumentParser(description='Manage mail handler rules')
    p.add_argument('--db', default=DEFAULT_DB_NAME, help='Path to the rule database')
    sub = p.add_subparsers(dest='cmd')

    sub.add_parser('init-db', help='Create the rule table')

    lst = sub.add_parser('list-rules', help='List rules in priority order')
    lst.add_argument('--mailbox', type=str, help='Only rules for this mailbox')
    lst.add_argument('--folder', type=str, help='Only rules for this folder')
    lst.add_argument('--all', action='store_true', help='Include disabled rules')

    imp = sub.add_parser('import-rules', help='Insert rules from a JSON file')
    imp.add_argument('file', help='JSON list of rule records')

    for name, text in (('enable', 'Enable a rule'), ('disable', 'Disable a rule')):
        sp = sub.add_parser(name, help=text)
        sp.add_argument('id', type=int)

    delete = sub.add_parser('delete', help='Delete a rule')
    delete.add_argument('id', type=int)
    delete.add_argument('--yes', action='store_true', help='Do not ask for confirmation')

    test = sub.add_parser('test-rule', help='Check a rule against a sample message')
    test.add_argument('id', type=int)
    test.add_argument('--sender', default='', help='Sender address')
    test.add_argument('--subject', default='', help='Subject line')
    test.add_argument('--body', default='', help='Plain text body')

    args = p.parse_args(argv)
    commands = {
        'init-db': cmd_init_db,
        'list-rules': cmd_list_rules,
        'import-rules': cmd_import_rules,
        'enable': cmd_enable,
        'disable': cmd_disable,
        'delete': cmd_delete,
        'test-rule': cmd_test_rule,
    }
    if args.cmd not in commands:
        p.print_help()
        return 0

    db = None
    try:
        db = RuleStore(args.db)
        commands[args.cmd](db, args)
    except (MailHandlerError, OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    finally:
        if db:
            db.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
