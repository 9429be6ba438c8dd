import uuid
from unittest import mock

import pytest
from pymongo import UpdateOne
from pymongo.errors import PyMongoError

from couponflow.models import ProcessedCouponFile
from couponflow.repository import (
    CouponRepository,
    MongoCouponRepository,
    Repository,
    RepositoryError,
)


class FakeCollection:
    def __init__(self, error=None, found=None):
        self.error = error
        self.found = found
        self.calls = []

    def _record(self, name, *args):
        self.calls.append((name, args))
        if self.error is not None:
            raise self.error

    def bulk_write(self, requests):
        self._record("bulk_write", requests)

    def update_many(self, query, update):
        self._record("update_many", query, update)

    def find_one(self, query):
        self._record("find_one", query)
        return self.found

    def insert_one(self, document):
        self._record("insert_one", document)

    def update_one(self, query, update):
        self._record("update_one", query, update)


def make_repo(coupons=None, processed=None):
    coupons = coupons or FakeCollection()
    processed = processed or FakeCollection()
    return MongoCouponRepository(coupons, processed), coupons, processed


def sample_file():
    return ProcessedCouponFile(
        id="file-123",
        md5_hash="abc123",
        file_name="test-file.gz",
        is_add=True,
        size=1024,
        coupon_code_count=0,
        datetime=1700000000,
        status="initiated",
    )


def test_add_coupons_success():
    repo, coupons, _ = make_repo()
    fixed = uuid.UUID(int=1)
    with mock.patch("couponflow.repository.uuid.uuid4", return_value=fixed), mock.patch(
        "couponflow.repository.time.time", return_value=1000.5
    ):
        repo.add_coupons("test-file.gz", ["COUPON1", "COUPON2", "COUPON3"])
    assert len(coupons.calls) == 1
    name, (requests,) = coupons.calls[0]
    assert name == "bulk_write"
    assert len(requests) == 3
    assert requests[0] == UpdateOne(
        {"coupon_code": "COUPON1", "file_name": "test-file.gz"},
        {
            "$set": {"datetime": 1000, "isactive": True},
            "$setOnInsert": {
                "id": str(fixed),
                "coupon_code": "COUPON1",
                "file_name": "test-file.gz",
            },
        },
        upsert=True,
    )


def test_add_coupons_empty_codes_skips_write():
    repo, coupons, _ = make_repo()
    repo.add_coupons("test-file.gz", [])
    assert coupons.calls == []


def test_add_coupons_database_error():
    repo, _, _ = make_repo(coupons=FakeCollection(error=PyMongoError("database connection failed")))
    with pytest.raises(RepositoryError, match="database connection failed"):
        repo.add_coupons("test-file.gz", ["COUPON1", "COUPON2"])


def test_add_coupons_single_code():
    repo, coupons, _ = make_repo()
    repo.add_coupons("test-file.gz", ["SINGLECOUPON"])
    requests = coupons.calls[0][1][0]
    assert len(requests) == 1


def test_deactivate_coupons_success():
    repo, coupons, _ = make_repo()
    repo.deactivate_coupons("test-file.gz", ["COUPON1", "COUPON2", "COUPON3"])
    assert coupons.calls == [
        (
            "update_many",
            (
                {"file_name": "test-file.gz", "coupon_code": {"$in": ["COUPON1", "COUPON2", "COUPON3"]}},
                {"$set": {"isactive": False}},
            ),
        )
    ]


def test_deactivate_coupons_database_error():
    repo, _, _ = make_repo(coupons=FakeCollection(error=PyMongoError("database connection failed")))
    with pytest.raises(RepositoryError, match="database connection failed"):
        repo.deactivate_coupons("test-file.gz", ["COUPON1", "COUPON2"])


def test_is_file_processed_database_error():
    repo, _, _ = make_repo(processed=FakeCollection(error=PyMongoError("Registry cannot be nil")))
    with pytest.raises(RepositoryError, match="Registry cannot be nil"):
        repo.is_file_processed(True, "test-file.gz")


def test_is_file_processed_not_found():
    repo, _, processed = make_repo()
    assert repo.is_file_processed(True, "test-file.gz") is None
    assert processed.calls == [
        ("find_one", ({"$and": [{"isadd": True}, {"file_name": "test-file.gz"}]},))
    ]


def test_is_file_processed_found():
    record = sample_file()
    document = dict(record.to_document(), _id="object-id")
    repo, _, _ = make_repo(processed=FakeCollection(found=document))
    assert repo.is_file_processed(True, "test-file.gz") == record


def test_insert_processed_file_success():
    repo, _, processed = make_repo()
    record = sample_file()
    repo.insert_processed_file(record)
    assert processed.calls == [("insert_one", (record.to_document(),))]


def test_insert_processed_file_database_error():
    repo, _, _ = make_repo(processed=FakeCollection(error=PyMongoError("database connection failed")))
    with pytest.raises(RepositoryError, match="database connection failed"):
        repo.insert_processed_file(sample_file())


def test_update_processing_status_success():
    repo, _, processed = make_repo()
    repo.update_processing_status("file-123", "completed", 100)
    assert processed.calls == [
        (
            "update_one",
            ({"id": "file-123"}, {"$set": {"status": "completed", "coupon_code_counts": 100}}),
        )
    ]


def test_update_processing_status_database_error():
    repo, _, _ = make_repo(processed=FakeCollection(error=PyMongoError("database connection failed")))
    with pytest.raises(RepositoryError, match="database connection failed"):
        repo.update_processing_status("file-123", "failed", 50)


def test_interface_compliance():
    repo, coupons, processed = make_repo()
    assert isinstance(repo, CouponRepository)
    repo.add_coupons("test.gz", ["CODE1"])
    repo.deactivate_coupons("test.gz", ["CODE1"])
    repo.insert_processed_file(ProcessedCouponFile(id="test"))
    repo.update_processing_status("test", "completed", 10)
    assert [name for name, _ in coupons.calls] == ["bulk_write", "update_many"]
    assert [name for name, _ in processed.calls] == ["insert_one", "update_one"]


def test_from_database_uses_named_collections():
    database = {"coupons": FakeCollection(), "processed-coupon-files": FakeCollection()}
    repo = MongoCouponRepository.from_database(database)
    assert repo.coupon_collection is database["coupons"]
    assert repo.processed_files_collection is database["processed-coupon-files"]


def test_repository_builds_coupon_repository():
    with Repository("mongodb", "localhost", 27017, "coupons-db") as repository:
        assert repository.uri == "mongodb://localhost:27017"
        coupon_repo = repository.coupon_repository()
        assert coupon_repo.coupon_collection.name == "coupons"
        assert coupon_repo.processed_files_collection.name == "processed-coupon-files"
        assert coupon_repo.coupon_collection.database.name == "coupons-db"


def test_repository_invalid_scheme():
    with pytest.raises(RepositoryError, match="error connecting to mongodb"):
        Repository("http", "localhost", 27017, "coupons-db")