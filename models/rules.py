import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from models.errors import MalformedRuleError

LOCAL_HOST = '.'
DEFAULT_PRIORITY = 100
DYNAMIC_SOURCES = ('body', 'subject', 'sender')
DEFAULT_DYNAMIC_SOURCE = 'body'
MAX_EVENT_ID = 65535


class Severity(Enum):
    """Event log entry types accepted by the Windows event log."""
    INFORMATION = 'Information'
    WARNING = 'Warning'
    ERROR = 'Error'
    SUCCESS_AUDIT = 'SuccessAudit'
    FAILURE_AUDIT = 'FailureAudit'

    @classmethod
    def parse(cls, value) -> 'Severity':
        if isinstance(value, Severity):
            return value
        text = str(value or '').replace(' ', '').strip().lower()
        if not text:
            return cls.INFORMATION
        for member in cls:
            if member.value.lower() == text:
                return member
        raise MalformedRuleError(f"Unknown severity '{value}'")


# Where an event record is written: (host, log name, source)
@dataclass(frozen=True)
class LogTarget:
    host: str
    log_name: str
    source: str

    @property
    def is_local(self) -> bool:
        return self.host.lower() in ('', LOCAL_HOST, 'localhost')

    def __str__(self):
        return f"{self.host or LOCAL_HOST}\\{self.log_name}\\{self.source}"


# Literal message; None falls back to subject + body
@dataclass(frozen=True)
class StaticMessage:
    template: Optional[str] = None


# Message text taken from the first regex match against a field of the email
@dataclass(frozen=True)
class DynamicExtraction:
    pattern: re.Pattern
    source: str = DEFAULT_DYNAMIC_SOURCE

    def __post_init__(self):
        source = (self.source or '').strip().lower()
        if source not in DYNAMIC_SOURCES:
            print(f"Warning: unknown dynamic source '{self.source}', defaulting to '{DEFAULT_DYNAMIC_SOURCE}'")
            source = DEFAULT_DYNAMIC_SOURCE
        object.__setattr__(self, 'source', source)


MessageSpec = Union[StaticMessage, DynamicExtraction]


def compile_pattern(pattern: Optional[str], case_sensitive: bool, field_name: str, rule_label: str) -> re.Pattern:
    """Compiles a rule pattern, raising MalformedRuleError when it is missing or invalid."""
    if pattern is None:
        raise MalformedRuleError(f"Rule {rule_label}: missing {field_name}")
    flags = 0 if case_sensitive else re.IGNORECASE
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise MalformedRuleError(f"Rule {rule_label}: invalid {field_name} '{pattern}': {e}") from e


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'y')
    return bool(value)


# Represents a single matching/action rule, immutable once built
@dataclass(frozen=True)
class Rule:
    id: Optional[int]
    name: str
    mailbox: str
    folder: str
    sender_pattern: re.Pattern
    subject_pattern: re.Pattern
    body_pattern: re.Pattern
    target: LogTarget
    event_id: int
    message: MessageSpec
    processed_marker: str
    severity: Severity = Severity.INFORMATION
    priority: int = DEFAULT_PRIORITY
    enabled: bool = True
    destination_folder: Optional[str] = None
    case_sensitive: bool = False

    def __post_init__(self):
        label = self.name or f"#{self.id}"
        required = {
            'name': self.name,
            'mailbox': self.mailbox,
            'folder': self.folder,
            'log_name': self.target.log_name,
            'log_source': self.target.source,
            'processed_marker': self.processed_marker,
        }
        for field_name, value in required.items():
            if not value or not str(value).strip():
                raise MalformedRuleError(f"Rule {label}: missing {field_name}")
        if not 0 <= self.event_id <= MAX_EVENT_ID:
            raise MalformedRuleError(f"Rule {label}: event_id {self.event_id} outside 0..{MAX_EVENT_ID}")
        for field_name in ('sender_pattern', 'subject_pattern', 'body_pattern'):
            if not isinstance(getattr(self, field_name), re.Pattern):
                raise MalformedRuleError(f"Rule {label}: {field_name} is not a compiled pattern")
        if not isinstance(self.message, (StaticMessage, DynamicExtraction)):
            raise MalformedRuleError(f"Rule {label}: unsupported message specification")

    @property
    def is_dynamic(self) -> bool:
        return isinstance(self.message, DynamicExtraction)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> 'Rule':
        """
        Builds a Rule from a store row or JSON record.
        The sender pattern is always case-insensitive; subject, body and the
        dynamic extraction pattern follow the record's case_sensitive flag.
        """
        label = record.get('name') or f"#{record.get('id')}"
        case_sensitive = _as_bool(record.get('case_sensitive', False))

        try:
            event_id = int(record.get('event_id'))
            priority = int(record.get('priority') if record.get('priority') is not None else DEFAULT_PRIORITY)
        except (TypeError, ValueError) as e:
            raise MalformedRuleError(f"Rule {label}: event_id and priority must be integers") from e

        if _as_bool(record.get('dynamic', False)):
            message = DynamicExtraction(
                pattern=compile_pattern(record.get('message') or None, case_sensitive, 'message', label),
                source=record.get('dynamic_source') or DEFAULT_DYNAMIC_SOURCE,
            )
        else:
            message = StaticMessage(template=record.get('message') or None)

        return cls(
            id=record.get('id'),
            name=record.get('name') or '',
            mailbox=record.get('mailbox') or '',
            folder=record.get('folder') or '',
            destination_folder=record.get('destination_folder') or None,
            sender_pattern=compile_pattern(record.get('sender_pattern'), False, 'sender_pattern', label),
            subject_pattern=compile_pattern(record.get('subject_pattern'), case_sensitive, 'subject_pattern', label),
            body_pattern=compile_pattern(record.get('body_pattern'), case_sensitive, 'body_pattern', label),
            target=LogTarget(
                host=record.get('log_host') or LOCAL_HOST,
                log_name=record.get('log_name') or '',
                source=record.get('log_source') or '',
            ),
            event_id=event_id,
            severity=Severity.parse(record.get('severity')),
            message=message,
            processed_marker=record.get('processed_marker') or '',
            priority=priority,
            enabled=_as_bool(record.get('enabled', True)),
            case_sensitive=case_sensitive,
        )
