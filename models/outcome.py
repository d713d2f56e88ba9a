from dataclasses import dataclass, field
from typing import List, Optional

from models.email import Email
from models.rules import LogTarget, Severity


# Result of invoking a rule's action for one email
@dataclass(frozen=True)
class LogOutcome:
    rule_name: str
    target: LogTarget
    event_id: int
    severity: Severity
    message: str
    truncated: bool = False
    written: bool = False


# What happened to one matched email during a run
@dataclass(frozen=True)
class MessageResult:
    email: Email
    rule_name: str
    outcome: Optional[LogOutcome] = None


@dataclass
class RunSummary:
    fetched: int = 0
    matched: int = 0
    logged: int = 0
    processed: int = 0
    failed: int = 0
    results: List[MessageResult] = field(default_factory=list)
