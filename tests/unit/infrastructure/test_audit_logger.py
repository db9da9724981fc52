import json

import pytest

from infrastructure.logging.audit import AuditLogger


@pytest.fixture()
def audit(tmp_path):
    logger = AuditLogger(str(tmp_path / "logs" / "audit.log"), logger_name="plantbuddy.audit.test")
    yield logger
    logger.close()


def _records(audit):
    for handler in audit.logger.handlers:
        handler.flush()
    with open(audit.log_path, encoding="utf-8") as fh:
        return [json.loads(line) for line in fh if line.strip()]


def test_writes_one_json_record_per_event(audit):
    audit.log_event(actor="alice", action="login", resource="session", outcome="success", role="standard")
    audit.log_event(actor="alice", action="edit_plant", resource="plant/7", outcome="conflict", server_version=4)

    records = _records(audit)

    assert [r["action"] for r in records] == ["login", "edit_plant"]
    assert records[1]["meta"] == {"server_version": 4}
    assert records[0]["ts"].endswith("+00:00")


def test_secrets_are_redacted(audit):
    audit.log_event(actor="admin", action="create_user", resource="user/new", outcome="success", password="hunter2", Token="abc")

    record = _records(audit)[0]

    assert record["meta"] == {"password": "***", "Token": "***"}
    assert "hunter2" not in audit.log_path.read_text(encoding="utf-8")


def test_second_logger_on_same_file_adds_no_handler(audit):
    again = AuditLogger(str(audit.log_path), logger_name="plantbuddy.audit.test")

    assert len(again.logger.handlers) == 1
