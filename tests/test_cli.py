import json
from dataclasses import replace
from unittest.mock import Mock

import pytest

from helpers import make_email, make_record

import main as cli
import manage
from config import ProcessorConfig
from models.errors import ConnectivityError


def write_rules(tmp_path, *records):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps([{k: v for k, v in r.items() if k != "id"} for r in records]))
    return str(path)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "rules.db")
    rules_file = write_rules(
        tmp_path,
        make_record(name="Vendor alerts"),
        make_record(name="Retina scans", priority=5, dynamic=True, message=r"order #\d+", log_source="Retina"),
    )
    assert manage.main(["--db", path, "import-rules", rules_file]) == 0
    return path


def test_config_validation():
    with pytest.raises(ValueError):
        ProcessorConfig(mailbox="")
    with pytest.raises(ValueError):
        ProcessorConfig(mailbox="alerts@example.org", limit=0)
    with pytest.raises(ValueError):
        ProcessorConfig(mailbox="alerts@example.org", folder=" ")

    config = ProcessorConfig(mailbox="alerts@example.org")
    assert config.folder == "INBOX"
    assert config.mutates_mailbox is True
    assert replace(config, log_only=True).mutates_mailbox is False


def test_main_rejects_invalid_limit(capsys):
    assert cli.main(["--mailbox", "alerts@example.org", "--limit", "-5"]) == 2
    assert "Invalid configuration" in capsys.readouterr().out


def test_main_runs_end_to_end(db_path, monkeypatch):
    client = Mock()
    client.resolve_labels.return_value = {"INBOX": "INBOX"}
    client.fetch_emails.return_value = [make_email(body="order #4471 failed")]
    client.tag_subject.side_effect = lambda email, marker: replace(email, subject=marker + email.subject)
    sink = Mock()
    monkeypatch.setattr(cli, "GmailClient", lambda config: client)
    monkeypatch.setattr(cli, "WindowsEventLog", lambda: sink)

    code = cli.main(["--mailbox", "alerts@example.org", "--db", db_path, "--limit", "10"])

    assert code == 0
    client.fetch_emails.assert_called_once_with("INBOX", 10)
    assert sink.register_source.call_count == 2
    sink.write.assert_called_once()
    client.tag_subject.assert_called_once()


def test_main_returns_error_code_on_fatal_failure(db_path, monkeypatch, capsys):
    client = Mock()
    client.resolve_labels.return_value = {"INBOX": "INBOX"}
    client.fetch_emails.side_effect = ConnectivityError("mailbox unreachable")
    monkeypatch.setattr(cli, "GmailClient", lambda config: client)
    monkeypatch.setattr(cli, "WindowsEventLog", lambda: Mock())

    code = cli.main(["--mailbox", "alerts@example.org", "--db", db_path])

    assert code == 1
    assert "Run aborted: mailbox unreachable" in capsys.readouterr().out


def test_main_dry_run_does_not_open_event_log(db_path, monkeypatch):
    client = Mock()
    client.resolve_labels.return_value = {"INBOX": "INBOX"}
    client.fetch_emails.return_value = [make_email()]
    event_log = Mock()
    monkeypatch.setattr(cli, "GmailClient", lambda config: client)
    monkeypatch.setattr(cli, "WindowsEventLog", event_log)

    assert cli.main(["--mailbox", "alerts@example.org", "--db", db_path, "--dry-run"]) == 0
    event_log.assert_not_called()
    client.tag_subject.assert_not_called()


def test_manage_list_and_toggle(db_path, capsys):
    capsys.readouterr()
    assert manage.main(["--db", db_path, "list-rules"]) == 0
    out = capsys.readouterr().out
    assert out.index("Vendor alerts") < out.index("Retina scans")
    assert "dynamic(body)" in out

    assert manage.main(["--db", db_path, "disable", "1"]) == 0
    manage.main(["--db", db_path, "list-rules"])
    assert "Vendor alerts" not in capsys.readouterr().out

    manage.main(["--db", db_path, "list-rules", "--all"])
    assert "(disabled)" in capsys.readouterr().out

    manage.main(["--db", db_path, "enable", "42"])
    assert "Rule 42 not found." in capsys.readouterr().out


def test_manage_test_rule(db_path, capsys):
    capsys.readouterr()
    manage.main(["--db", db_path, "test-rule", "2", "--sender", "x@vendor.com",
                 "--subject", "ALERT: scan", "--body", "order #4471 failed"])
    out = capsys.readouterr().out
    assert "MATCH -> event 1001" in out
    assert "'order #4471'" in out

    manage.main(["--db", db_path, "test-rule", "1", "--sender", "x@other.com", "--subject", "ALERT"])
    assert "NO MATCH" in capsys.readouterr().out


def test_manage_delete_with_yes(db_path, capsys):
    assert manage.main(["--db", db_path, "delete", "1", "--yes"]) == 0
    assert "Rule 1 deleted." in capsys.readouterr().out


def test_manage_import_rejects_bad_file(tmp_path, capsys):
    bad = write_rules(tmp_path, make_record(subject_pattern="("))

    assert manage.main(["--db", str(tmp_path / "r.db"), "import-rules", bad]) == 1
    assert "Error:" in capsys.readouterr().out


def test_demo_script_dry_runs_sample_rules(capsys):
    from helpers import ROOT
    from scripts.demo_rule import run_demo

    run_demo(str(ROOT / "rules" / "sample_rules.json"))

    out = capsys.readouterr().out
    assert "Rule MATCHED: 'Vendor disk alerts'" in out
    assert "[DRY-RUN] Would move email demo-1 to 'Processed'" in out


def test_main_reports_missing_credentials(db_path, tmp_path, capsys):
    code = cli.main(["--mailbox", "alerts@example.org", "--db", db_path,
                     "--credentials", str(tmp_path / "missing.json"), "--token", str(tmp_path / "token.pickle")])

    assert code == 1
    assert "Run aborted: Could not authenticate" in capsys.readouterr().out
