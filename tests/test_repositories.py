"""Tests for user scoping across the repositories."""

import pytest

from rolodex.core.exceptions import OwnershipError
from rolodex.models.job_status import JobStatus
from rolodex.repositories import (
    ActivityRepository,
    CustomerRepository,
    ExportRepository,
    ImportRepository,
    UserRepository,
)
from rolodex.schemas.customer import CustomerFilters
from tests.conftest import OTHER_USER_ID, USER_ID, make_customer


def _create_import(db, user_id=USER_ID, **fields):
    values = {
        "filename": f"contacts_{user_id.hex[:6]}_{fields.pop('suffix', 'a')}.csv",
        "original_filename": "contacts.csv",
        "status": JobStatus.PENDING.value,
    }
    values.update(fields)
    return ImportRepository(db).create(user_id, **values)


def _create_export(db, user_id=USER_ID, **fields):
    values = {"filename": "customers_export.csv", "status": JobStatus.PENDING.value}
    values.update(fields)
    return ExportRepository(db).create(user_id, **values)


class TestCustomerRepository:
    def test_queries_are_scoped_to_owner(self, db_session):
        mine = make_customer(db_session, first_name="Mine")
        theirs = make_customer(db_session, user_id=OTHER_USER_ID, first_name="Theirs")
        repo = CustomerRepository(db_session)

        assert [c.id for c in repo.get_all(USER_ID)] == [mine.id]
        assert repo.count(USER_ID) == 1
        assert repo.find(USER_ID, theirs.id) is None
        assert repo.find_by_slug(USER_ID, theirs.slug) is None

    def test_update_of_foreign_customer_raises(self, db_session):
        theirs = make_customer(db_session, user_id=OTHER_USER_ID)

        with pytest.raises(OwnershipError):
            CustomerRepository(db_session).update(USER_ID, theirs.id, {"first_name": "X"})

    def test_delete_of_foreign_customer_raises(self, db_session):
        theirs = make_customer(db_session, user_id=OTHER_USER_ID)

        with pytest.raises(OwnershipError):
            CustomerRepository(db_session).delete(USER_ID, theirs.id)
        assert CustomerRepository(db_session).find(OTHER_USER_ID, theirs.id) is not None

    def test_same_email_allowed_for_different_users(self, db_session):
        make_customer(db_session, email="shared@example.com")
        make_customer(db_session, user_id=OTHER_USER_ID, email="shared@example.com")

        repo = CustomerRepository(db_session)
        assert repo.email_exists(USER_ID, "SHARED@example.com")
        assert repo.email_exists(OTHER_USER_ID, "shared@example.com")

    def test_iter_batches_covers_all_rows_in_order(self, db_session):
        for i in range(7):
            make_customer(db_session, first_name=f"Customer{i}")
        repo = CustomerRepository(db_session)

        batches = list(repo.iter_batches(USER_ID, CustomerFilters(), batch_size=3))

        assert [len(b) for b in batches] == [3, 3, 1]
        names = [c.first_name for batch in batches for c in batch]
        assert names == [c.first_name for c in repo.get_filtered(USER_ID, CustomerFilters())]

    def test_iter_batches_honours_limit(self, db_session):
        for i in range(5):
            make_customer(db_session, first_name=f"Customer{i}")

        batches = list(
            CustomerRepository(db_session).iter_batches(
                USER_ID, CustomerFilters(limit=4), batch_size=3
            )
        )

        assert [len(b) for b in batches] == [3, 1]

    def test_names_by_id_ignores_foreign_customers(self, db_session):
        mine = make_customer(db_session, first_name="Ann", last_name="Lee")
        theirs = make_customer(db_session, user_id=OTHER_USER_ID)

        names = CustomerRepository(db_session).names_by_id(USER_ID, [mine.id, theirs.id])

        assert names == {mine.id: "Ann Lee"}


class TestImportRepository:
    def test_find_is_scoped(self, db_session):
        import_ = _create_import(db_session, user_id=OTHER_USER_ID)
        repo = ImportRepository(db_session)

        assert repo.find(USER_ID, import_.id) is None
        assert repo.find(OTHER_USER_ID, import_.id) is not None
        assert repo.count(USER_ID) == 0

    def test_transition_of_foreign_import_raises(self, db_session):
        import_ = _create_import(db_session, user_id=OTHER_USER_ID)

        with pytest.raises(OwnershipError):
            ImportRepository(db_session).transition(USER_ID, import_.id, JobStatus.CANCELLED)

    def test_status_counts(self, db_session):
        _create_import(db_session, suffix="a")
        _create_import(db_session, suffix="b", status=JobStatus.COMPLETED.value)
        _create_import(db_session, suffix="c", status=JobStatus.COMPLETED.value)

        counts = ImportRepository(db_session).status_counts(USER_ID)

        assert counts == {"pending": 1, "completed": 2}


class TestExportRepository:
    def test_find_is_scoped(self, db_session):
        export = _create_export(db_session, user_id=OTHER_USER_ID)
        repo = ExportRepository(db_session)

        assert repo.find(USER_ID, export.id) is None
        assert repo.get_all(USER_ID) == []

    def test_delete_of_foreign_export_raises(self, db_session):
        export = _create_export(db_session, user_id=OTHER_USER_ID)

        with pytest.raises(OwnershipError):
            ExportRepository(db_session).delete(USER_ID, export.id)

    def test_format_counts(self, db_session):
        _create_export(db_session, format="csv")
        _create_export(db_session, format="json")
        _create_export(db_session, format="csv")

        assert ExportRepository(db_session).format_counts(USER_ID) == {"csv": 2, "json": 1}


class TestActivityRepository:
    def test_trail_of_foreign_customer_raises(self, db_session):
        theirs = make_customer(db_session, user_id=OTHER_USER_ID)

        with pytest.raises(OwnershipError):
            ActivityRepository(db_session).get_customer_trail(USER_ID, theirs.id)

    def test_user_trail_is_scoped(self, db_session):
        make_customer(db_session)
        make_customer(db_session, user_id=OTHER_USER_ID)
        make_customer(db_session, user_id=OTHER_USER_ID)
        repo = ActivityRepository(db_session)

        assert repo.count(USER_ID) == 1
        assert repo.count(OTHER_USER_ID) == 2


class TestUserRepository:
    def test_get_by_email_is_case_insensitive(self, db_session):
        user = UserRepository(db_session).get_by_email("ADA@example.com")
        assert user is not None
        assert user.id == USER_ID
        assert user.full_name == "Ada Tester"
