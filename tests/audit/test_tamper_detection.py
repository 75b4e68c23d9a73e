"""
Tamper detection tests.

Raw SQL bypasses the ORM immutability listeners.  These tests alter stored
content that way and verify the write-time result hash catches it on read
and on export.
"""

import json

import pytest
from sqlalchemy import text

from calc_audit_kernel.exceptions import TamperDetectedError
from tests.conftest import TEST_COMPANY_ID, TEST_REVIEWER_ID


def _raw(session_factory, sql, **params):
    with session_factory() as session:
        session.execute(text(sql), params)
        session.commit()


class TestTamperDetection:

    def test_untouched_record_verifies(self, store, record_calculation):
        recorded = record_calculation(total="6000")
        record, steps = store.get_breakdown(recorded.record_id)
        assert len(record.result_hash) == 64
        assert len(steps) == 2

    def test_altered_final_result(self, store, record_calculation, session_factory, captured_logs):
        recorded = record_calculation(total="6000")
        record = store.get_record(recorded.record_id)
        altered = {**record.final_result, "totalAmount": "60"}

        _raw(
            session_factory,
            "UPDATE calculation_records SET final_result = :fr WHERE id = :id",
            fr=json.dumps(altered), id=str(recorded.record_id),
        )

        with pytest.raises(TamperDetectedError) as exc_info:
            store.get_breakdown(recorded.record_id)
        assert exc_info.value.record_id == str(recorded.record_id)
        assert exc_info.value.expected_hash == record.result_hash
        assert exc_info.value.computed_hash != record.result_hash

        alerts = [r for r in captured_logs() if r["message"] == "calculation_tamper_detected"]
        assert alerts and alerts[0]["level"] == "ERROR"

    def test_altered_step_result(self, store, record_calculation, session_factory):
        recorded = record_calculation(total="6000")
        _raw(
            session_factory,
            "UPDATE calculation_breakdown_steps SET result = :result "
            "WHERE record_id = :id AND step_number = 2",
            result="5999.0000", id=str(recorded.record_id),
        )

        with pytest.raises(TamperDetectedError):
            store.get_breakdown(recorded.record_id)

    def test_altered_input_data(self, store, record_calculation, session_factory):
        recorded = record_calculation(total="6000")
        _raw(
            session_factory,
            "UPDATE calculation_records SET input_data = :data WHERE id = :id",
            data=json.dumps({"period": "2025-01", "sales": "1"}), id=str(recorded.record_id),
        )

        with pytest.raises(TamperDetectedError):
            store.get_breakdown(recorded.record_id)

    def test_export_refuses_tampered_record(
        self, reporting_service, export_service, record_calculation, session_factory,
    ):
        recorded = record_calculation(total="6000")
        record_calculation(total="1000")
        report = reporting_service.generate_summary_report(
            TEST_COMPANY_ID, "monthly", "2025-01", TEST_REVIEWER_ID,
        )
        _raw(
            session_factory,
            "UPDATE calculation_breakdown_steps SET description = 'edited' "
            "WHERE record_id = :id AND step_number = 1",
            id=str(recorded.record_id),
        )

        with pytest.raises(TamperDetectedError):
            export_service.export(report.id, "csv")
        assert reporting_service.get_report(report.id).is_exported is False
