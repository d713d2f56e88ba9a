from typing import Dict, Iterable, Optional

from models.email import Email
from models.rules import Rule


def is_processed(email: Email, rule: Rule) -> bool:
    """True when the subject already carries the rule's processed marker."""
    return (email.subject or '').casefold().startswith(rule.processed_marker.casefold())


def evaluate(email: Email, rule: Rule) -> Dict[str, bool]:
    """
    Evaluates the four predicates of a rule against an email.
    Case sensitivity is baked into the compiled patterns: the sender pattern
    never cares about case, subject and body follow the rule.
    """
    return {
        'unprocessed': not is_processed(email, rule),
        'sender': rule.sender_pattern.search(email.from_address or '') is not None,
        'subject': rule.subject_pattern.search(email.subject or '') is not None,
        'body': rule.body_pattern.search(email.body_text or '') is not None,
    }


def matches(email: Email, rule: Rule) -> bool:
    # An already-tagged subject short-circuits before any pattern runs
    if is_processed(email, rule):
        return False
    return all(evaluate(email, rule).values())


def match(email: Email, rules: Iterable[Rule]) -> Optional[Rule]:
    """Returns the first rule, in the given order, whose predicates all hold."""
    for rule in rules:
        if matches(email, rule):
            return rule
    return None
