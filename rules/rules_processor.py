from dataclasses import replace
from typing import Callable, Dict, List, Optional

from clients.event_log import EventLogSink
from config import ProcessorConfig
from models.email import Email
from models.errors import LogTargetUnregisteredError, MessageActionError
from models.outcome import MessageResult, RunSummary
from models.rules import Rule
from rules.actions import ActionInvoker
from rules.matcher import evaluate, match


class RuleProcessor:
    def __init__(self, config: ProcessorConfig, rule_store=None, mail_client=None,
                 event_sink: Optional[EventLogSink] = None, confirm: Optional[Callable[[str], bool]] = None):
        self.config = config
        self.db = rule_store
        self.client = mail_client
        self.invoker = ActionInvoker(event_sink)
        self.confirm = confirm
        self.dry_run = config.dry_run
        self.verbose = config.verbose
        self.source_label_id: Optional[str] = None
        self.destinations: Dict[str, str] = {}

    def load_rules(self) -> List[Rule]:
        """Loads enabled rules for the configured mailbox and folder, lowest priority first."""
        rules = self.db.load_rules(mailbox=self.config.mailbox, folder=self.config.folder)
        if self.config.rule_name:
            needle = self.config.rule_name.lower()
            rules = [r for r in rules if needle in r.name.lower()]
            print(f"Filtered to {len(rules)} rule(s) matching '{self.config.rule_name}'")
        return rules

    def resolve_folders(self, rules: List[Rule]):
        """Looks up the source folder and every destination folder in one batch."""
        destinations = sorted({r.destination_folder for r in rules if r.destination_folder})
        resolved = self.client.resolve_labels([self.config.folder] + destinations)
        self.source_label_id = resolved.get(self.config.folder)
        for name in destinations:
            if name in resolved:
                self.destinations[name] = resolved[name]
            else:
                print(f"Warning: destination folder '{name}' not found; matching emails will stay in '{self.config.folder}'")

    def run(self) -> RunSummary:
        """
        One full pass:
        1. Load rules from the store.
        2. Register every log target the rules write to.
        3. Resolve folders and fetch the oldest emails first.
        4. Match, log and mark each email.
        """
        print("--- Mail Handler Started ---")
        if not self.client or not self.db:
            raise ValueError("RuleProcessor.run needs both a rule store and a mail client.")

        rules = self.load_rules()
        print(f"Step 1: Loaded {len(rules)} rule(s) for {self.config.mailbox}/{self.config.folder}")
        if not rules:
            print("No enabled rules; nothing to do.")
            return RunSummary()

        if self.dry_run:
            print("Step 2: Dry-run mode enabled, skipping event source registration.")
        else:
            if self.invoker.sink is None:
                raise ValueError("An event log sink must be set on RuleProcessor unless running in dry-run mode.")
            targets = self.invoker.register_targets(rules)
            print(f"Step 2: {len(targets)} event source(s) ready.")

        self.resolve_folders(rules)
        emails = self.client.fetch_emails(self.config.folder, self.config.limit)
        print(f"Step 3: Fetched {len(emails)} email(s) from '{self.config.folder}'.")

        print("Step 4: Rules to apply:")
        for r in rules:
            print(f"  {r.priority}: {r.name}")
        summary = self.process_emails(emails, rules)

        print(f"Done: {summary.matched} matched, {summary.logged} logged, "
              f"{summary.processed} marked processed, {summary.failed} failed.")
        print("--- Mail Handler Finished ---")
        return summary

    def process_emails(self, emails: List[Email], rules: List[Rule]) -> RunSummary:
        """Main loop: at most one rule per email, in the order the emails are given."""
        if not self.dry_run and self.invoker.sink is None:
            raise ValueError("An event log sink must be set on RuleProcessor unless running in dry-run mode.")

        summary = RunSummary(fetched=len(emails))
        for email in emails:
            if self.verbose:
                print(f"\nEvaluating email {email.id[:8]}: From='{email.from_address}' Subject='{email.subject}' Received='{email.received_at}'")
                for rule in rules:
                    print(f"  Rule '{rule.name}' (priority {rule.priority}): {evaluate(email, rule)}")

            rule = match(email, rules)
            if rule is None:
                continue
            summary.matched += 1
            print(f"Rule MATCHED: '{rule.name}' for email ID: {email.id[:8]}...")

            if self.dry_run:
                self._report_dry_run(email, rule)
                summary.results.append(MessageResult(email=email, rule_name=rule.name))
                continue

            try:
                outcome = self.invoker.invoke(rule, email)
            except (LogTargetUnregisteredError, MessageActionError) as e:
                print(f"Warning: {e}. Email {email.id[:8]} left for a later run.")
                summary.failed += 1
                continue
            summary.logged += 1
            if outcome.truncated:
                print(f"Message for email {email.id[:8]} truncated to {len(outcome.message)} characters")

            if not self.config.log_only:
                try:
                    email = self._mark_processed(email, rule)
                    summary.processed += 1
                except MessageActionError as e:
                    print(f"Warning: {e}")
                    summary.failed += 1
            summary.results.append(MessageResult(email=email, rule_name=rule.name, outcome=outcome))

        return summary

    def _confirmed(self, prompt: str) -> bool:
        if self.confirm is None:
            return True
        return bool(self.confirm(prompt))

    def _mark_processed(self, email: Email, rule: Rule) -> Email:
        """Tags the subject, marks read and moves the email. Returns its new state."""
        if self._confirmed(f"Prefix subject of email {email.id[:8]} with '{rule.processed_marker}'"):
            email = self.client.tag_subject(email, rule.processed_marker)

        if not email.is_read and self._confirmed(f"Mark email {email.id[:8]} as read"):
            self.client.mark_as_read_unread(email.id, mark_as_read=True)
            email = replace(email, is_read=True, label_ids=tuple(l for l in email.label_ids if l != 'UNREAD'))

        if rule.destination_folder:
            label_id = self.destinations.get(rule.destination_folder)
            if label_id is None:
                print(f"Warning: folder '{rule.destination_folder}' unavailable, email {email.id[:8]} not moved")
            elif self._confirmed(f"Move email {email.id[:8]} to '{rule.destination_folder}'"):
                self.client.move_message(email.id, label_id, self.source_label_id or self.config.folder)
                print(f"Action: Moved email {email.id[:8]}... to '{rule.destination_folder}'")

        return email

    def _report_dry_run(self, email: Email, rule: Rule):
        text, truncated = self.invoker.compute_message(rule, email)
        preview = text if len(text) <= 80 else text[:77] + '...'
        print(f"[DRY-RUN] Would write event {rule.event_id} ({rule.severity.value}) to {rule.target}: {preview!r}")
        if truncated:
            print(f"[DRY-RUN] Message would be truncated to {len(text)} characters")
        if self.config.log_only:
            return
        print(f"[DRY-RUN] Would prefix subject of email {email.id[:8]} with '{rule.processed_marker}'")
        if not email.is_read:
            print(f"[DRY-RUN] Would mark email {email.id[:8]} as read")
        if rule.destination_folder:
            print(f"[DRY-RUN] Would move email {email.id[:8]} to '{rule.destination_folder}'")
