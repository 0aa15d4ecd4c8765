"""Tests for customer audit events and the audit service."""

import csv
import io
import json
import os
import time
import uuid
from datetime import timedelta

import pytest

from rolodex.core.exceptions import OwnershipError
from rolodex.models.activity import Activity
from rolodex.models.shared import utc_now
from rolodex.schemas.customer import CustomerUpdate
from rolodex.services.audit_service import AuditService, activity_frequency
from rolodex.services.customer_service import CustomerService
from tests.conftest import OTHER_USER_ID, USER_ID, make_customer


def _backdate(db, days: int, **criteria) -> None:
    query = db.query(Activity)
    for column, value in criteria.items():
        query = query.filter(getattr(Activity, column) == value)
    query.update({"created_at": utc_now() - timedelta(days=days)}, synchronize_session=False)
    db.commit()


class TestCustomerEvents:
    def test_create_is_recorded(self, db_session):
        customer = make_customer(db_session, first_name="Ann", last_name="Lee", email="ann@example.com")

        trail, total = AuditService(db_session).get_customer_audit_trail(USER_ID, customer.id)

        assert total == 1
        activity = trail[0]
        assert activity.event == "created"
        assert activity.description == "Customer 'Ann Lee' was created"
        assert activity.properties["email"] == "ann@example.com"
        assert activity.properties["source"] == "web"
        assert activity.subject_type == "customer"

    def test_update_records_changed_fields(self, db_session):
        customer = make_customer(db_session, organization="Acme")

        CustomerService(db_session).update_customer(
            USER_ID,
            customer.id,
            CustomerUpdate(organization="Globex", job_title="CTO"),
            context={"source": "web", "ip_address": "10.0.0.1"},
        )

        updated = AuditService(db_session).get_activities_by_event(USER_ID, "updated")
        assert len(updated) == 1
        properties = updated[0].properties
        assert properties["changes"] == {
            "organization": {"old": "Acme", "new": "Globex"},
            "job_title": {"old": None, "new": "CTO"},
        }
        assert sorted(properties["changed_fields"]) == ["job_title", "organization"]
        assert properties["ip_address"] == "10.0.0.1"

    def test_update_without_changes_is_not_recorded(self, db_session):
        customer = make_customer(db_session, organization="Acme")

        CustomerService(db_session).update_customer(USER_ID, customer.id, CustomerUpdate(organization="Acme"))

        assert AuditService(db_session).get_activities_by_event(USER_ID, "updated") == []

    def test_delete_keeps_history(self, db_session):
        customer = make_customer(db_session, first_name="Ann", last_name="Lee")

        assert CustomerService(db_session).delete_customer(USER_ID, customer.id) is True

        deleted = AuditService(db_session).get_activities_by_event(USER_ID, "deleted")
        assert len(deleted) == 1
        assert deleted[0].subject_id == customer.id
        assert deleted[0].properties["deleted_data"]["first_name"] == "Ann"
        assert db_session.query(Activity).filter(Activity.subject_id == customer.id).count() == 2


class TestLogCustomerActivity:
    def test_custom_event(self, db_session):
        customer = make_customer(db_session)

        activity = AuditService(db_session).log_customer_activity(
            USER_ID, customer.id, "called", "Discussed renewal", {"duration": 12}
        )

        assert activity.event == "called"
        assert activity.properties == {"duration": 12, "source": "web"}

    def test_foreign_customer(self, db_session):
        customer = make_customer(db_session, user_id=OTHER_USER_ID)

        with pytest.raises(OwnershipError):
            AuditService(db_session).log_customer_activity(USER_ID, customer.id, "called", "Hi")

    def test_missing_customer(self, db_session):
        with pytest.raises(ValueError, match="not found"):
            AuditService(db_session).log_customer_activity(USER_ID, uuid.uuid4(), "called", "Hi")


class TestTrails:
    def test_customer_trail_is_newest_first(self, db_session):
        customer = make_customer(db_session)
        service = AuditService(db_session)
        service.log_customer_activity(USER_ID, customer.id, "called", "First call")
        service.log_customer_activity(USER_ID, customer.id, "emailed", "Follow up")

        trail, total = service.get_customer_audit_trail(USER_ID, customer.id, limit=2)

        assert total == 3
        assert [a.event for a in trail] == ["emailed", "called"]

    def test_foreign_customer_trail(self, db_session):
        customer = make_customer(db_session, user_id=OTHER_USER_ID)

        with pytest.raises(OwnershipError):
            AuditService(db_session).get_customer_audit_trail(USER_ID, customer.id)

    def test_user_trail_is_scoped(self, db_session):
        make_customer(db_session)
        make_customer(db_session, user_id=OTHER_USER_ID)

        trail, total = AuditService(db_session).get_user_audit_trail(USER_ID)

        assert total == 1
        assert all(a.user_id == USER_ID for a in trail)

    def test_recent_activities_since(self, db_session):
        old = make_customer(db_session)
        make_customer(db_session)
        _backdate(db_session, 3, subject_id=old.id)

        recent = AuditService(db_session).get_recent_user_activities(
            USER_ID, since=utc_now() - timedelta(days=1)
        )

        assert len(recent) == 1
        assert recent[0].subject_id != old.id

    def test_date_range(self, db_session):
        old = make_customer(db_session)
        make_customer(db_session)
        _backdate(db_session, 10, subject_id=old.id)
        now = utc_now()

        activities = AuditService(db_session).get_activities_by_date_range(
            USER_ID, now - timedelta(days=11), now - timedelta(days=9)
        )

        assert [a.subject_id for a in activities] == [old.id]

    def test_inverted_date_range(self, db_session):
        now = utc_now()

        with pytest.raises(ValueError):
            AuditService(db_session).get_activities_by_date_range(USER_ID, now, now - timedelta(days=1))


class TestStatistics:
    def test_audit_statistics(self, db_session):
        busy = make_customer(db_session)
        make_customer(db_session)
        service = AuditService(db_session)
        service.log_customer_activity(USER_ID, busy.id, "called", "Call")
        make_customer(db_session, user_id=OTHER_USER_ID)

        stats = service.get_audit_statistics(USER_ID)

        assert stats.total_activities == 3
        assert stats.activities_today == 3
        assert stats.activities_this_week == 3
        assert stats.activities_this_month == 3
        assert stats.event_breakdown == {"created": 2, "called": 1}
        assert stats.most_active_customers[0].subject_id == busy.id
        assert stats.most_active_customers[0].activity_count == 2

    def test_customer_summary(self, db_session):
        customer = make_customer(db_session)
        service = AuditService(db_session)
        service.log_customer_activity(USER_ID, customer.id, "called", "Call")
        service.log_customer_activity(USER_ID, customer.id, "called", "Call again")

        summary = service.get_customer_activity_summary(USER_ID, customer.id)

        assert summary.total_activities == 3
        assert summary.event_breakdown == {"created": 1, "called": 2}
        assert summary.most_recent_event == "called"
        assert summary.first_activity <= summary.last_activity
        assert summary.activity_frequency.per_day == 3.0

    def test_customer_summary_missing(self, db_session):
        assert AuditService(db_session).get_customer_activity_summary(USER_ID, uuid.uuid4()) is None

    def test_period_statistics(self, db_session):
        make_customer(db_session)
        old = make_customer(db_session)
        _backdate(db_session, 20, subject_id=old.id)

        week = AuditService(db_session).get_statistics_for_period(USER_ID, "7days")
        month = AuditService(db_session).get_statistics_for_period(USER_ID, "30days")

        assert week.total_activities == 1
        assert week.daily_breakdown == {utc_now().date().isoformat(): 1}
        assert month.total_activities == 2
        assert month.event_breakdown == {"created": 2}


class TestActivityFrequency:
    def test_rates_over_span(self):
        now = utc_now()

        frequency = activity_frequency(10, now - timedelta(days=5), now)

        assert (frequency.per_day, frequency.per_week, frequency.per_month) == (2.0, 14.0, 60.0)

    def test_same_day_counts_as_one_day(self):
        now = utc_now()
        assert activity_frequency(4, now, now).per_day == 4.0

    def test_no_activity(self):
        assert activity_frequency(0, None, None).per_day == 0.0


class TestFormatting:
    def test_resolves_causer_and_subject(self, db_session):
        customer = make_customer(db_session, first_name="Ann", last_name="Lee")
        service = AuditService(db_session)
        activity = service.get_user_audit_trail(USER_ID)[0][0]

        formatted = service.format_activity(USER_ID, activity)

        assert formatted.causer == "Ada Tester"
        assert formatted.subject == "Ann Lee"
        assert formatted.id == activity.id
        assert formatted.changes == {}
        assert customer.id == activity.subject_id

    def test_deleted_customer_is_unknown(self, db_session):
        customer = make_customer(db_session)
        CustomerService(db_session).delete_customer(USER_ID, customer.id)
        service = AuditService(db_session)

        formatted = service.format_activities(USER_ID, service.get_user_audit_trail(USER_ID)[0])

        assert {f.subject for f in formatted} == {"Unknown"}


class TestExportAuditTrail:
    def test_csv(self, db_session):
        make_customer(db_session, first_name="Ann", last_name="Lee")
        make_customer(db_session, first_name="Bob", last_name="Ray")
        now = utc_now()

        content, media_type, filename = AuditService(db_session).export_audit_trail(
            USER_ID, now - timedelta(days=1), now + timedelta(minutes=1), "csv"
        )

        rows = list(csv.reader(io.StringIO(content.decode())))
        assert media_type == "text/csv"
        assert filename.startswith("audit-trail-") and filename.endswith(".csv")
        assert rows[0] == ["ID", "Event", "Description", "Customer", "Date", "User", "IP Address"]
        assert [row[3] for row in rows[1:]] == ["Ann Lee", "Bob Ray"]
        assert rows[1][5] == "Ada Tester"
        assert rows[1][6] == "N/A"

    def test_json(self, db_session):
        make_customer(db_session)
        now = utc_now()

        content, media_type, filename = AuditService(db_session).export_audit_trail(
            USER_ID, now - timedelta(days=1), now + timedelta(minutes=1), "json"
        )

        data = json.loads(content)
        assert media_type == "application/json"
        assert filename.endswith(".json")
        assert data["total_activities"] == len(data["activities"]) == 1
        assert data["activities"][0]["event"] == "created"

    def test_unsupported_format(self, db_session):
        now = utc_now()

        with pytest.raises(ValueError):
            AuditService(db_session).export_audit_trail(USER_ID, now - timedelta(days=1), now, "xml")


class TestArchives:
    def test_store_and_retrieve(self, db_session):
        make_customer(db_session)
        service = AuditService(db_session)

        path = service.store_audit_archive(USER_ID)
        data = service.retrieve_audit_archive(USER_ID, path)

        assert path.startswith(f"audit-trails/user_{USER_ID}/audit_")
        assert data["user_id"] == str(USER_ID)
        assert data["user_email"] == "ada@example.com"
        assert data["total_activities"] == 1
        assert [a.path for a in service.list_stored_audits(USER_ID)] == [path]

    def test_other_users_archive_is_forbidden(self, db_session):
        service = AuditService(db_session)
        path = service.store_audit_archive(OTHER_USER_ID)

        with pytest.raises(OwnershipError):
            service.retrieve_audit_archive(USER_ID, path)
        with pytest.raises(OwnershipError):
            service.retrieve_audit_archive(
                USER_ID, f"audit-trails/user_{USER_ID}/../user_{OTHER_USER_ID}/{path.rsplit('/', 1)[1]}"
            )
        assert service.list_stored_audits(USER_ID) == []

    def test_missing_archive(self, db_session):
        with pytest.raises(ValueError, match="not found"):
            AuditService(db_session).retrieve_audit_archive(
                USER_ID, f"audit-trails/user_{USER_ID}/missing.json"
            )

    def test_cleanup_old_archives(self, db_session, storage):
        service = AuditService(db_session)
        now = utc_now()
        old_path = service.store_audit_archive(USER_ID, now - timedelta(days=90), now - timedelta(days=60))
        fresh_path = service.store_audit_archive(USER_ID, now - timedelta(days=30), now)
        other_path = service.store_audit_archive(OTHER_USER_ID, now - timedelta(days=90), now)
        old = time.time() - 40 * 86400
        for path in (old_path, other_path):
            os.utime(storage.root / path, (old, old))

        assert service.cleanup_old_audits(USER_ID, days=30) == 1
        assert not storage.exists(old_path)
        assert storage.exists(fresh_path)
        assert storage.exists(other_path)

        assert service.cleanup_old_audits(days=30) == 1
        assert not storage.exists(other_path)

    def test_archive_old_activities(self, db_session):
        old_customers = [make_customer(db_session), make_customer(db_session)]
        make_customer(db_session)
        for customer in old_customers:
            _backdate(db_session, 400, subject_id=customer.id)
        service = AuditService(db_session)

        archived = service.archive_old_activities(USER_ID, utc_now() - timedelta(days=365))

        assert archived == 2
        assert service.get_user_audit_trail(USER_ID)[1] == 1
        archives = service.list_stored_audits(USER_ID)
        assert len(archives) == 1
        assert service.retrieve_audit_archive(USER_ID, archives[0].path)["total_activities"] == 2

    def test_archive_with_nothing_to_archive(self, db_session):
        make_customer(db_session)
        service = AuditService(db_session)

        assert service.archive_old_activities(USER_ID, utc_now() - timedelta(days=365)) == 0
        assert service.list_stored_audits(USER_ID) == []
