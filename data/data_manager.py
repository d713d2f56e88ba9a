import json
import sqlite3
from typing import Any, Dict, List, Mapping, Optional

from models.errors import ConnectivityError, MalformedRuleError
from models.rules import Rule

RULE_COLUMNS = (
    'id', 'name', 'enabled', 'priority', 'mailbox', 'folder', 'destination_folder',
    'sender_pattern', 'subject_pattern', 'body_pattern',
    'log_host', 'log_name', 'log_source', 'event_id', 'severity',
    'message', 'dynamic', 'dynamic_source', 'processed_marker', 'case_sensitive',
)


class RuleStore:
    def __init__(self, db_name='mail_rules.db'):
        self.db_name = db_name
        self.conn = None
        self.connect()
        self.initialize_db()

    def connect(self):
        """Establishes the connection to the SQLite database."""
        try:
            self.conn = sqlite3.connect(self.db_name)
            self.conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            raise ConnectivityError(f"Error connecting to rule store '{self.db_name}': {e}") from e

    def initialize_db(self):
        """Creates the 'mail_rules' table if it doesn't already exist."""
        CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS mail_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            enabled INTEGER NOT NULL DEFAULT 1,
            priority INTEGER NOT NULL DEFAULT 100,
            mailbox TEXT NOT NULL,
            folder TEXT NOT NULL,
            destination_folder TEXT,
            sender_pattern TEXT NOT NULL DEFAULT '',
            subject_pattern TEXT NOT NULL DEFAULT '',
            body_pattern TEXT NOT NULL DEFAULT '',
            log_host TEXT NOT NULL DEFAULT '.',
            log_name TEXT NOT NULL,
            log_source TEXT NOT NULL,
            event_id INTEGER NOT NULL,
            severity TEXT NOT NULL DEFAULT 'Information',
            message TEXT,
            dynamic INTEGER NOT NULL DEFAULT 0,
            dynamic_source TEXT,
            processed_marker TEXT NOT NULL,
            case_sensitive INTEGER NOT NULL DEFAULT 0
        );
        """
        try:
            cursor = self.conn.cursor()
            cursor.execute(CREATE_TABLE_SQL)
            self.conn.commit()
        except sqlite3.Error as e:
            raise ConnectivityError(f"Error preparing rule store '{self.db_name}': {e}") from e

    def _query(self, sql: str, params=()) -> List[sqlite3.Row]:
        try:
            cursor = self.conn.cursor()
            cursor.execute(sql, params)
            return cursor.fetchall()
        except sqlite3.Error as e:
            raise ConnectivityError(f"Error reading rule store '{self.db_name}': {e}") from e

    def _execute(self, sql: str, params=()) -> sqlite3.Cursor:
        try:
            cursor = self.conn.cursor()
            cursor.execute(sql, params)
            self.conn.commit()
            return cursor
        except sqlite3.Error as e:
            raise ConnectivityError(f"Error writing rule store '{self.db_name}': {e}") from e

    def load_rules(self, mailbox: Optional[str] = None, folder: Optional[str] = None,
                   include_disabled: bool = False) -> List[Rule]:
        """
        Loads rules in ascending priority order, optionally scoped to a mailbox
        and folder. A row that cannot be turned into a Rule aborts the whole
        load rather than being skipped.
        """
        clauses = []
        params: List[Any] = []
        if not include_disabled:
            clauses.append("enabled = 1")
        if mailbox:
            clauses.append("mailbox = ? COLLATE NOCASE")
            params.append(mailbox)
        if folder:
            clauses.append("folder = ? COLLATE NOCASE")
            params.append(folder)

        SELECT_SQL = "SELECT * FROM mail_rules"
        if clauses:
            SELECT_SQL += " WHERE " + " AND ".join(clauses)
        SELECT_SQL += " ORDER BY priority ASC, id ASC"

        rules = []
        for row in self._query(SELECT_SQL, params):
            try:
                rules.append(Rule.from_record(dict(row)))
            except MalformedRuleError as e:
                raise MalformedRuleError(f"Rule id {row['id']} in '{self.db_name}' is malformed: {e}") from e
        return rules

    def get_rule_record(self, rule_id: int) -> Optional[Dict[str, Any]]:
        """Returns the raw row for a rule, or None if the id is unknown."""
        rows = self._query("SELECT * FROM mail_rules WHERE id = ?", (rule_id,))
        return dict(rows[0]) if rows else None

    def save_rule(self, record: Mapping[str, Any]) -> int:
        """Validates a rule record and inserts it, returning the new id."""
        # Raises MalformedRuleError before anything is written
        Rule.from_record(record)

        columns = [c for c in RULE_COLUMNS if c != 'id' and record.get(c) is not None]
        INSERT_SQL = "INSERT INTO mail_rules ({}) VALUES ({})".format(
            ", ".join(columns), ", ".join("?" for _ in columns)
        )
        values = []
        for column in columns:
            value = record[column]
            values.append(int(value) if isinstance(value, bool) else value)
        cursor = self._execute(INSERT_SQL, values)
        return cursor.lastrowid

    def import_rules(self, file_path: str) -> List[int]:
        """Loads a JSON list of rule records; every record is validated before any insert."""
        with open(file_path, 'r') as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise MalformedRuleError(f"{file_path}: expected a JSON list of rules")
        for record in data:
            Rule.from_record(record)
        return [self.save_rule(record) for record in data]

    def set_enabled(self, rule_id: int, enabled: bool) -> bool:
        """Enables or disables a rule. Returns False if the id is unknown."""
        cursor = self._execute("UPDATE mail_rules SET enabled = ? WHERE id = ?", (1 if enabled else 0, rule_id))
        return cursor.rowcount > 0

    def delete_rule(self, rule_id: int) -> bool:
        cursor = self._execute("DELETE FROM mail_rules WHERE id = ?", (rule_id,))
        return cursor.rowcount > 0

    def close(self):
        """Closes the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
