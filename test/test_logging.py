import pytest
from oo_keeper.core.logger import get_logger, verify_audit_line, SETTLEMENTS_SENT


def test_audit_log_and_prometheus(tmp_path, monkeypatch):
    monkeypatch.setattr("oo_keeper.core.logger.AUDIT_FILE", str(tmp_path / "audit.log"))
    log = get_logger("test")
    log.info("UNIT_TEST_EVENT", tx_hash="0xabc", data=1)
    with open(tmp_path / "audit.log") as f:
        line = f.readline()

    event = verify_audit_line(line)
    assert event["event"] == "UNIT_TEST_EVENT"
    assert event["tx_hash"] == "0xabc"

    with pytest.raises(ValueError):
        verify_audit_line(line.replace("0xabc", "0xdef"))

    c = SETTLEMENTS_SENT.labels("unit")
    initial = c._value.get()
    c.inc()
    assert c._value.get() == initial + 1
