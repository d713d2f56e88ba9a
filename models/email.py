from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

# Email data class used for standardization across the application.
# Frozen: post-processing produces a new value via dataclasses.replace.
@dataclass(frozen=True)
class Email:
    id: str
    thread_id: str
    from_address: str
    subject: str
    body_text: str
    received_at: Optional[datetime]
    is_read: bool
    label_ids: Tuple[str, ...] = field(default_factory=tuple)
