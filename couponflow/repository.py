"""Coupon storage in MongoDB and tracking of processed coupon files."""

from __future__ import annotations

import abc
import time
import uuid
from typing import Any, List, Optional, Sequence

from pymongo import MongoClient, UpdateOne
from pymongo.errors import PyMongoError

from .models import ProcessedCouponFile

COUPONS_COLLECTION = "coupons"
PROCESSED_FILES_COLLECTION = "processed-coupon-files"


class RepositoryError(Exception):
    """Raised when a database operation fails."""


class CouponRepository(abc.ABC):
    """Operations the coupon processor needs from its storage."""

    @abc.abstractmethod
    def add_coupons(self, file_name: str, codes: Sequence[str]) -> None:
        """Store the codes as active coupons coming from ``file_name``."""

    @abc.abstractmethod
    def deactivate_coupons(self, file_name: str, codes: Sequence[str]) -> None:
        """Mark the codes from ``file_name`` as inactive."""

    @abc.abstractmethod
    def is_file_processed(self, is_add: bool, file_name: str) -> Optional[ProcessedCouponFile]:
        """Return the processing record for the file, or None if there is none."""

    @abc.abstractmethod
    def insert_processed_file(self, processed_file: ProcessedCouponFile) -> None:
        """Record a new processed file."""

    @abc.abstractmethod
    def update_processing_status(self, file_id: str, status: str, total: int) -> None:
        """Set the status and coupon count of a processed file."""


class MongoCouponRepository(CouponRepository):
    """CouponRepository backed by two MongoDB collections."""

    def __init__(self, coupon_collection: Any, processed_files_collection: Any) -> None:
        self.coupon_collection = coupon_collection
        self.processed_files_collection = processed_files_collection

    @classmethod
    def from_database(cls, database: Any) -> "MongoCouponRepository":
        """Use the standard collections of ``database``."""
        return cls(database[COUPONS_COLLECTION], database[PROCESSED_FILES_COLLECTION])

    def add_coupons(self, file_name: str, codes: Sequence[str]) -> None:
        """Upsert the codes as active; existing ones get a fresh timestamp."""
        if not codes:
            return
        now = int(time.time())
        requests: List[UpdateOne] = [
            UpdateOne(
                {"coupon_code": code, "file_name": file_name},
                {
                    "$set": {"datetime": now, "isactive": True},
                    "$setOnInsert": {
                        "id": str(uuid.uuid4()),
                        "coupon_code": code,
                        "file_name": file_name,
                    },
                },
                upsert=True,
            )
            for code in codes
        ]
        try:
            self.coupon_collection.bulk_write(requests)
        except PyMongoError as exc:
            raise RepositoryError(f"failed to upsert coupons: {exc}") from exc

    def deactivate_coupons(self, file_name: str, codes: Sequence[str]) -> None:
        query = {"file_name": file_name, "coupon_code": {"$in": list(codes)}}
        update = {"$set": {"isactive": False}}
        try:
            self.coupon_collection.update_many(query, update)
        except PyMongoError as exc:
            raise RepositoryError(f"failed to deactivate coupons: {exc}") from exc

    def is_file_processed(self, is_add: bool, file_name: str) -> Optional[ProcessedCouponFile]:
        query = {"$and": [{"isadd": is_add}, {"file_name": file_name}]}
        try:
            document = self.processed_files_collection.find_one(query)
        except PyMongoError as exc:
            raise RepositoryError(f"failed to find processed file: {exc}") from exc
        if document is None:
            return None
        return ProcessedCouponFile.from_document(document)

    def insert_processed_file(self, processed_file: ProcessedCouponFile) -> None:
        try:
            self.processed_files_collection.insert_one(processed_file.to_document())
        except PyMongoError as exc:
            raise RepositoryError(f"failed to insert processed file: {exc}") from exc

    def update_processing_status(self, file_id: str, status: str, total: int) -> None:
        query = {"id": file_id}
        update = {"$set": {"status": status, "coupon_code_counts": total}}
        try:
            self.processed_files_collection.update_one(query, update)
        except PyMongoError as exc:
            raise RepositoryError(f"failed to update processing status: {exc}") from exc


class Repository:
    """A MongoDB client bound to one database."""

    def __init__(self, scheme: str, host: str, port: int, database_name: str) -> None:
        self.uri = f"{scheme}://{host}:{port}"
        try:
            self._client = MongoClient(self.uri)
        except PyMongoError as exc:
            raise RepositoryError(f"error connecting to mongodb: {exc}") from exc
        self.database = self._client[database_name]

    def coupon_repository(self) -> MongoCouponRepository:
        """Return a coupon repository over this database."""
        return MongoCouponRepository.from_database(self.database)

    def close(self) -> None:
        """Disconnect from the server."""
        self._client.close()

    def __enter__(self) -> "Repository":
        return self

    def __exit__(self, *args) -> None:
        self.close()