import json

from paygate.services.audit_log import AuditLog


def test_entries_are_appended_per_category(tmp_path):
    audit_log = AuditLog(str(tmp_path / "logs"))

    assert audit_log.write("callback", {"ip": "196.201.214.200", "data": {"Body": {}}})
    assert audit_log.write("callback", {"ip": "196.201.214.200", "data": {}})
    assert audit_log.write("request", {"phone": "254712345678", "amount": 100})

    callback_lines = (tmp_path / "logs" / "callback_log.json").read_text(encoding="utf-8").splitlines()
    assert len(callback_lines) == 2
    first = json.loads(callback_lines[0])
    assert first["ip"] == "196.201.214.200"
    assert first["data"] == {"Body": {}}
    assert "timestamp" in first
    assert (tmp_path / "logs" / "request_log.json").exists()


def test_disabled_category_is_skipped(tmp_path):
    audit_log = AuditLog(str(tmp_path), enabled_categories={"request"})

    assert audit_log.write("mock", {"phone": "254712345678"}) is False
    assert not audit_log.path_for("mock").exists()


def test_write_failure_does_not_raise(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way", encoding="utf-8")
    audit_log = AuditLog(str(blocker))

    assert audit_log.write("request", {"phone": "254712345678"}) is False
