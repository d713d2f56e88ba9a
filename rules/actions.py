from typing import Iterable, List, Set, Tuple

from clients.event_log import EventLogSink
from models.email import Email
from models.errors import LogTargetUnregisteredError
from models.outcome import LogOutcome
from models.rules import DynamicExtraction, LogTarget, Rule

# Longest string the Windows event log accepts in a single record
MAX_MESSAGE_LENGTH = 31839


def _source_text(email: Email, source: str) -> str:
    if source == 'subject':
        return email.subject or ''
    if source == 'sender':
        return email.from_address or ''
    return email.body_text or ''


def truncate(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> Tuple[str, bool]:
    if len(text) <= max_length:
        return text, False
    return text[:max_length], True


class ActionInvoker:
    def __init__(self, sink: EventLogSink, max_length: int = MAX_MESSAGE_LENGTH):
        self.sink = sink
        self.max_length = max_length
        self.registered: Set[LogTarget] = set()

    def register_targets(self, rules: Iterable[Rule]) -> List[LogTarget]:
        """
        Registers each distinct log target used by the rules, once.
        Sources that already exist are fine; any other failure raises
        LogTargetRegistrationError and nothing is added for it.
        """
        targets = []
        for rule in rules:
            if rule.target not in targets:
                targets.append(rule.target)

        for target in targets:
            if target in self.registered:
                continue
            created = self.sink.register_source(target)
            if not created:
                print(f"Event source {target} already registered")
            self.registered.add(target)
        return targets

    def compute_message(self, rule: Rule, email: Email) -> Tuple[str, bool]:
        """Returns the (possibly truncated) text to log and whether it was truncated."""
        message_spec = rule.message
        if isinstance(message_spec, DynamicExtraction):
            found = message_spec.pattern.search(_source_text(email, message_spec.source))
            # Whole match, not the first group
            text = found.group(0) if found else ''
        elif message_spec.template is not None:
            text = message_spec.template
        else:
            text = f"{email.subject or ''}\n{email.body_text or ''}"
        return truncate(text, self.max_length)

    def invoke(self, rule: Rule, email: Email) -> LogOutcome:
        """Writes one event record for a matched email. No retries."""
        if rule.target not in self.registered:
            raise LogTargetUnregisteredError(f"Event source {rule.target} was not registered before use by rule '{rule.name}'")

        text, truncated = self.compute_message(rule, email)
        self.sink.write(rule.target, rule.event_id, rule.severity, text)
        return LogOutcome(
            rule_name=rule.name,
            target=rule.target,
            event_id=rule.event_id,
            severity=rule.severity,
            message=text,
            truncated=truncated,
            written=True,
        )
