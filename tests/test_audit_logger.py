import json
import logging

from medibook.infrastructure.audit.std_logger import StdAuditLogger


def test_audit_entry_is_json(caplog):
    audit = StdAuditLogger()
    with caplog.at_level(logging.INFO):
        audit.log("appointment.create", appointment_id=5, patient_id=1, doctor_id=10, request_id="r1",
                  details={"time_slot": "09:00"})
    record = caplog.records[-1]
    assert record.levelno == logging.INFO
    entry = json.loads(record.getMessage().split("AUDIT: ", 1)[1])
    assert entry["action"] == "appointment.create"
    assert entry["appointment_id"] == 5
    assert entry["details"] == {"time_slot": "09:00"}


def test_failed_actions_log_as_warning(caplog):
    audit = StdAuditLogger()
    with caplog.at_level(logging.INFO):
        audit.log("appointment.cancel", appointment_id=5, success=False, details={"kind": "InvalidTransition"})
    assert caplog.records[-1].levelno == logging.WARNING
