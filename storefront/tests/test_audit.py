import csv
import io
from datetime import timedelta

import pytest

from storefront.models.database import utcnow
from storefront.repositories.audit import AuditFilters


@pytest.fixture
def populated_audit(audit):
    audit.record("admin-1", "UPDATE_STATUS", "ORDER", 1, {"new_status": "PROCESSING"})
    audit.record("admin-1", "CREATE", "COMPONENT", 7, {"sku": "CPU-001"})
    audit.record("spec-1", "ADD_PARTS", "REPAIR", 3, {"added_cost": "25.00"}, ip_address="10.0.0.5")
    audit.record(None, "CREATE", "ORDER", 2, {"is_guest_order": True})
    return audit


class TestAuditRecorder:
    def test_record_appends(self, audit):
        assert audit.record("admin-1", "CREATE", "ORDER", 1, {"total_amount": 10}) is True
        result = audit.query(AuditFilters())
        assert result["pagination"]["total"] == 1
        entry = result["logs"][0]
        assert entry["actor_id"] == "admin-1"
        assert entry["entity_id"] == "1"
        assert entry["details"] == {"total_amount": 10}

    def test_failure_is_swallowed(self, broken_audit):
        assert broken_audit.record("admin-1", "CREATE", "ORDER", 1) is False

    def test_unserializable_details_are_stringified(self, audit):
        assert audit.record("admin-1", "CREATE", "ORDER", 1, {"when": utcnow()}) is True

    def test_filter_by_actor_and_action(self, populated_audit):
        result = populated_audit.query(AuditFilters(actor_id="admin-1"))
        assert result["pagination"]["total"] == 2

        result = populated_audit.query(AuditFilters(action="CREATE", entity_type="ORDER"))
        assert [log["entity_id"] for log in result["logs"]] == ["2"]

    def test_filter_by_date_range(self, populated_audit):
        now = utcnow()
        assert populated_audit.query(AuditFilters(date_from=now + timedelta(days=1)))["logs"] == []
        in_range = populated_audit.query(
            AuditFilters(date_from=now - timedelta(days=1), date_to=now + timedelta(days=1))
        )
        assert in_range["pagination"]["total"] == 4

    def test_pagination(self, populated_audit):
        result = populated_audit.query(AuditFilters(), page=2, limit=3)
        assert len(result["logs"]) == 1
        assert result["pagination"] == {
            "page": 2,
            "limit": 3,
            "total": 4,
            "total_pages": 2,
            "has_next_page": False,
            "has_prev_page": True,
        }

    def test_newest_first(self, populated_audit):
        logs = populated_audit.query(AuditFilters())["logs"]
        assert logs[0]["entity_id"] == "2"
        assert logs[-1]["entity_id"] == "1"

    def test_export_csv(self, populated_audit):
        content = populated_audit.export_csv(AuditFilters(entity_type="REPAIR"))
        rows = list(csv.DictReader(io.StringIO(content)))
        assert len(rows) == 1
        assert rows[0]["action"] == "ADD_PARTS"
        assert rows[0]["ip_address"] == "10.0.0.5"
        assert rows[0]["details"] == '{"added_cost": "25.00"}'
