"""Tests for the customer CSV import pipeline."""

from unittest.mock import patch

import pytest

from rolodex.core.config import settings
from rolodex.core.exceptions import ImportFileError
from rolodex.models.activity import Activity
from rolodex.models.customer import Customer
from rolodex.models.job_status import JobStatus
from rolodex.repositories import CustomerRepository, ImportRepository
from rolodex.schemas.customer_import import ImportOptions
from rolodex.services.csv_reader import normalize_header
from rolodex.services.import_service import ImportService
from tests.conftest import OTHER_USER_ID, USER_ID, make_customer

HEADER = "first_name,last_name,email,organization"


def _csv(rows: list[str], header: str | None = HEADER, delimiter: str = ",") -> bytes:
    lines = ([header] if header is not None else []) + rows
    return ("\n".join(lines) + "\n").replace(",", delimiter).encode()


def _rows(count: int) -> list[str]:
    return [f"First{i},Last{i},person{i}@example.com,Acme" for i in range(1, count + 1)]


def _run(service: ImportService, content: bytes, options: ImportOptions | None = None, name="contacts.csv"):
    import_ = service.create_import(USER_ID, name, content, options)
    assert service.start_processing(USER_ID, import_.id) is True
    outcome = service.process_import_file(USER_ID, import_.id)
    return import_.id, outcome


class TestUploadValidation:
    def test_creates_pending_import_and_stores_file(self, db_session, storage):
        import_ = ImportService(db_session).create_import(USER_ID, "My Contacts.csv", _csv(_rows(2)))

        assert import_.status == JobStatus.PENDING.value
        assert import_.original_filename == "My Contacts.csv"
        assert import_.filename.startswith("my-contacts_")
        assert import_.file_path.startswith(f"imports/user_{USER_ID}/")
        assert storage.exists(import_.file_path)
        assert import_.options == {"has_headers": True, "delimiter": ",", "encoding": "UTF-8"}

    def test_rejects_unsupported_extension(self, db_session):
        with pytest.raises(ImportFileError) as exc_info:
            ImportService(db_session).create_import(USER_ID, "contacts.pdf", b"data")
        assert "file" in exc_info.value.errors

    def test_rejects_empty_file(self, db_session):
        with pytest.raises(ImportFileError, match="empty"):
            ImportService(db_session).create_import(USER_ID, "contacts.csv", b"")

    def test_rejects_oversized_file(self, db_session):
        with patch.object(settings, "IMPORT_MAX_FILE_SIZE", 10):
            with pytest.raises(ImportFileError, match="larger"):
                ImportService(db_session).create_import(USER_ID, "contacts.csv", b"x" * 11)

    def test_stored_filenames_are_unique(self, db_session):
        service = ImportService(db_session)
        first = service.create_import(USER_ID, "contacts.csv", _csv(_rows(1)))
        second = service.create_import(USER_ID, "contacts.csv", _csv(_rows(1)))

        assert first.filename != second.filename


class TestProcessing:
    def test_imports_all_valid_rows(self, db_session):
        service = ImportService(db_session)

        import_id, outcome = _run(service, _csv(_rows(100)))
        assert service.complete_import(USER_ID, import_id, outcome) is True

        stored = ImportRepository(db_session).find(USER_ID, import_id)
        assert stored.status == JobStatus.COMPLETED.value
        assert (stored.total_rows, stored.processed_rows) == (100, 100)
        assert (stored.successful_rows, stored.failed_rows) == (100, 0)
        assert stored.success_rate == 100.0
        assert CustomerRepository(db_session).count(USER_ID) == 100
        assert all(c.source_import_id == import_id for c in CustomerRepository(db_session).get_all(USER_ID))

    def test_each_imported_customer_is_audited(self, db_session):
        _run(ImportService(db_session), _csv(_rows(3)))

        activities = db_session.query(Activity).filter(Activity.user_id == USER_ID).all()
        assert len(activities) == 3
        assert {a.event for a in activities} == {"created"}
        assert all(a.properties["source"] == "import" for a in activities)

    def test_invalid_rows_are_reported_by_index(self, db_session):
        rows = _rows(10)
        rows[2] = "First3,Last3,not-an-email,Acme"
        rows[6] = ",Last7,person7@example.com,Acme"

        _, outcome = _run(ImportService(db_session), _csv(rows))

        assert outcome.total_rows == 10
        assert outcome.successful_rows == 8
        assert outcome.failed_rows == 2
        assert set(outcome.row_errors) == {"3", "7"}
        assert any("email" in message for message in outcome.row_errors["3"])
        assert any("first_name" in message for message in outcome.row_errors["7"])

    def test_counters_add_up(self, db_session):
        rows = _rows(6)
        rows[1] = "First2,Last2,broken,Acme"
        import_id, outcome = _run(ImportService(db_session), _csv(rows))

        stored = ImportRepository(db_session).find(USER_ID, import_id)
        assert stored.processed_rows == stored.successful_rows + stored.failed_rows == 6
        assert stored.row_errors == {"2": outcome.row_errors["2"]}

    def test_duplicate_email_within_file(self, db_session):
        rows = ["Ann,Lee,ann@example.com,Acme", "Anne,Leigh,ANN@example.com,Acme"]

        _, outcome = _run(ImportService(db_session), _csv(rows))

        assert outcome.successful_rows == 1
        assert outcome.row_errors["2"] == ["Duplicate email in file: ann@example.com"]

    def test_existing_customer_email_is_rejected(self, db_session):
        make_customer(db_session, email="taken@example.com")

        _, outcome = _run(ImportService(db_session), _csv(["Tom,Lee,taken@example.com,Acme"]))

        assert outcome.failed_rows == 1
        assert "already exists" in outcome.row_errors["1"][0]

    def test_other_users_customers_do_not_collide(self, db_session):
        make_customer(db_session, user_id=OTHER_USER_ID, email="shared@example.com")

        _, outcome = _run(ImportService(db_session), _csv(["Sam,Lee,shared@example.com,Acme"]))

        assert outcome.successful_rows == 1

    def test_blank_lines_are_skipped(self, db_session):
        content = b"first_name,email\n\nAnn,ann@example.com\n,\nBob,bob@example.com\n"

        _, outcome = _run(ImportService(db_session), content)

        assert outcome.total_rows == 2
        assert outcome.successful_rows == 2

    def test_semicolon_delimiter(self, db_session):
        options = ImportOptions(delimiter=";")

        _, outcome = _run(ImportService(db_session), _csv(_rows(3), delimiter=";"), options)

        assert outcome.successful_rows == 3

    def test_latin1_encoding(self, db_session):
        content = "first_name,last_name,email\nJosé,Muñoz,jose@example.com\n".encode("latin-1")

        _, outcome = _run(ImportService(db_session), content, ImportOptions(encoding="ISO-8859-1"))

        assert outcome.successful_rows == 1
        customer = CustomerRepository(db_session).find_by_email(USER_ID, "jose@example.com")
        assert customer.full_name == "José Muñoz"

    def test_utf8_byte_order_mark_is_ignored(self, db_session):
        content = "\ufefffirst_name,email\nAnn,ann@example.com\n".encode()

        _, outcome = _run(ImportService(db_session), content)

        assert outcome.successful_rows == 1

    def test_file_without_headers_uses_fixed_columns(self, db_session):
        content = b"Ann,Lee,ann@example.com,555-0100,Acme,Engineer,1990-05-01,Met at expo\n"

        _, outcome = _run(ImportService(db_session), content, ImportOptions(has_headers=False))

        assert outcome.successful_rows == 1
        customer = CustomerRepository(db_session).find_by_email(USER_ID, "ann@example.com")
        assert customer.job_title == "Engineer"
        assert customer.birthdate.isoformat() == "1990-05-01"
        assert customer.notes == "Met at expo"

    def test_header_aliases_and_full_name(self, db_session):
        content = b"Name,E-mail,Company,Position\nAnn Marie Lee,ann@example.com,Acme,CTO\n"

        _, outcome = _run(ImportService(db_session), content)

        assert outcome.successful_rows == 1
        customer = CustomerRepository(db_session).find_by_email(USER_ID, "ann@example.com")
        assert (customer.first_name, customer.last_name) == ("Ann", "Marie Lee")
        assert (customer.organization, customer.job_title) == ("Acme", "CTO")


class TestUnreadableFiles:
    def test_missing_required_columns(self, db_session):
        service = ImportService(db_session)
        import_ = service.create_import(USER_ID, "contacts.csv", b"foo,bar\n1,2\n")
        service.start_processing(USER_ID, import_.id)

        with pytest.raises(ImportFileError) as exc_info:
            service.process_import_file(USER_ID, import_.id)

        assert len(exc_info.value.errors["headers"]) == 2

    def test_header_only_whitespace_file(self, db_session):
        service = ImportService(db_session)
        import_ = service.create_import(USER_ID, "contacts.csv", b"\n\n")
        service.start_processing(USER_ID, import_.id)

        with pytest.raises(ImportFileError, match="empty"):
            service.process_import_file(USER_ID, import_.id)

    def test_wrong_encoding(self, db_session):
        service = ImportService(db_session)
        content = "first_name,email\nJosé,jose@example.com\n".encode("latin-1")
        import_ = service.create_import(USER_ID, "contacts.csv", content)
        service.start_processing(USER_ID, import_.id)

        with pytest.raises(ImportFileError) as exc_info:
            service.process_import_file(USER_ID, import_.id)

        assert "encoding" in exc_info.value.errors

    def test_missing_stored_file(self, db_session, storage):
        service = ImportService(db_session)
        import_ = service.create_import(USER_ID, "contacts.csv", _csv(_rows(1)))
        storage.delete(import_.file_path)
        service.start_processing(USER_ID, import_.id)

        with pytest.raises(ImportFileError, match="not found"):
            service.process_import_file(USER_ID, import_.id)


class TestLifecycle:
    def test_cancel_stops_processing_at_next_flush(self, db_session):
        service = ImportService(db_session)
        import_ = service.create_import(USER_ID, "contacts.csv", _csv(_rows(20)))
        service.start_processing(USER_ID, import_.id)
        process_row = service._process_row

        def process_then_cancel(user_id, import_id, index, values, outcome):
            process_row(user_id, import_id, index, values, outcome)
            if index == 5:
                ImportRepository(db_session).transition(USER_ID, import_id, JobStatus.CANCELLED)

        with (
            patch.object(settings, "IMPORT_PROGRESS_BATCH_SIZE", 5),
            patch.object(service, "_process_row", side_effect=process_then_cancel),
        ):
            outcome = service.process_import_file(USER_ID, import_.id)

        assert outcome.cancelled is True
        assert outcome.processed_rows == 5
        assert CustomerRepository(db_session).count(USER_ID) == 5
        assert service.complete_import(USER_ID, import_.id, outcome) is False
        assert service.get_import(USER_ID, import_.id).status == JobStatus.CANCELLED.value

    def test_cancel_rejected_once_completed(self, db_session):
        service = ImportService(db_session)
        import_id, outcome = _run(service, _csv(_rows(1)))
        service.complete_import(USER_ID, import_id, outcome)

        assert service.cancel_import(USER_ID, import_id) is False

    def test_rerun_after_failure_does_not_duplicate(self, db_session):
        service = ImportService(db_session)
        import_id, _ = _run(service, _csv(_rows(4)))
        assert service.fail_import(USER_ID, import_id, "worker lost") is True

        assert service.start_processing(USER_ID, import_id) is True
        outcome = service.process_import_file(USER_ID, import_id)

        assert outcome.successful_rows == 4
        assert outcome.failed_rows == 0
        assert db_session.query(Customer).filter(Customer.user_id == USER_ID).count() == 4

    def test_fail_import_records_validation_errors(self, db_session):
        service = ImportService(db_session)
        import_ = service.create_import(USER_ID, "contacts.csv", _csv(_rows(1)))

        service.fail_import(USER_ID, import_.id, "bad header", {"headers": ["Missing email"]})

        stored = service.get_import(USER_ID, import_.id)
        assert stored.status == JobStatus.FAILED.value
        assert stored.validation_errors == {"headers": ["Missing email"]}
        assert stored.error_message == "bad header"

    def test_delete_import_removes_file(self, db_session, storage):
        service = ImportService(db_session)
        import_ = service.create_import(USER_ID, "contacts.csv", _csv(_rows(1)))

        assert service.delete_import(USER_ID, import_.id) is True
        assert not storage.exists(import_.file_path)
        assert service.get_import(USER_ID, import_.id) is None


class TestQueries:
    def test_progress(self, db_session):
        service = ImportService(db_session)
        import_id, _ = _run(service, _csv(_rows(4)))

        progress = service.get_progress(USER_ID, import_id)

        assert progress.status == JobStatus.PROCESSING.value
        assert progress.progress_percentage == 100.0

    def test_statistics(self, db_session):
        service = ImportService(db_session)
        rows = _rows(4)
        rows[0] = "First1,Last1,broken,Acme"
        import_id, outcome = _run(service, _csv(rows))
        service.complete_import(USER_ID, import_id, outcome)
        service.create_import(USER_ID, "later.csv", _csv(_rows(1)))

        stats = service.get_import_statistics(USER_ID)

        assert stats.total_imports == 2
        assert stats.completed_imports == 1
        assert stats.processing_imports == 1
        assert stats.total_customers_imported == 3
        assert stats.overall_success_rate == 75.0
        assert len(stats.recent_imports) == 2

    def test_dashboard(self, db_session):
        service = ImportService(db_session)
        _run(service, _csv(_rows(2)))

        dashboard = service.get_dashboard_data(USER_ID)

        assert len(dashboard.processing_imports) == 1
        assert len(dashboard.recent_customers) == 2


class TestHeaderNormalization:
    @pytest.mark.parametrize(
        "cell,expected",
        [
            ("First Name", "first_name"),
            ("\ufeffEmail", "email"),
            ("E-mail", "email"),
            ("Date of Birth", "birthdate"),
            ("Organisation", "organization"),
            ("Job Title", "job_title"),
        ],
    )
    def test_normalize_header(self, cell, expected):
        assert normalize_header(cell) == expected
