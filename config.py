from dataclasses import dataclass
from typing import Optional

# Defaults for the command line; business logic only ever sees a ProcessorConfig
DEFAULT_FOLDER = 'INBOX'
DEFAULT_LIMIT = 50
DEFAULT_DB_NAME = 'mail_rules.db'
CREDENTIALS_FILE = 'client_secret.json'
TOKEN_FILE = 'token.pickle'


@dataclass(frozen=True)
class ProcessorConfig:
    """Settings for one mail handler run, validated on construction."""
    mailbox: str
    folder: str = DEFAULT_FOLDER
    limit: int = DEFAULT_LIMIT
    db_name: str = DEFAULT_DB_NAME
    dry_run: bool = False
    log_only: bool = False
    verbose: bool = False
    rule_name: Optional[str] = None
    credentials_file: str = CREDENTIALS_FILE
    token_file: str = TOKEN_FILE
    service_account_file: Optional[str] = None

    def __post_init__(self):
        if not self.mailbox or not self.mailbox.strip():
            raise ValueError("mailbox is required")
        if not self.folder or not self.folder.strip():
            raise ValueError("folder is required")
        if not isinstance(self.limit, int) or self.limit <= 0:
            raise ValueError(f"limit must be a positive integer, got {self.limit!r}")
        if not self.db_name:
            raise ValueError("db_name is required")

    @property
    def mutates_mailbox(self) -> bool:
        """True when matched messages get tagged, marked read and moved."""
        return not (self.dry_run or self.log_only)
