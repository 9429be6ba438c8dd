"""Records stored for coupons and for the coupon files that were processed."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping


@dataclass
class Coupon:
    """A coupon code together with the file it came from and whether it is active."""

    id: str = ""
    file_name: str = ""
    coupon_code: str = ""
    datetime: int = 0
    is_active: bool = False

    def to_document(self) -> Dict[str, Any]:
        """Return the stored form of this coupon."""
        return {
            "id": self.id,
            "file_name": self.file_name,
            "coupon_code": self.coupon_code,
            "datetime": self.datetime,
            "isactive": self.is_active,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Coupon":
        """Build a coupon from its stored form; missing fields take their zero values."""
        return cls(
            id=str(document.get("id", "")),
            file_name=str(document.get("file_name", "")),
            coupon_code=str(document.get("coupon_code", "")),
            datetime=int(document.get("datetime", 0)),
            is_active=bool(document.get("isactive", False)),
        )


@dataclass
class ProcessedCouponFile:
    """Processing state of one coupon file, used to skip or resume work."""

    id: str = ""
    md5_hash: str = ""
    file_name: str = ""
    is_add: bool = False
    size: int = 0
    coupon_code_count: int = 0
    datetime: int = 0
    status: str = ""

    def to_document(self) -> Dict[str, Any]:
        """Return the stored form of this record."""
        return {
            "id": self.id,
            "md5hash": self.md5_hash,
            "file_name": self.file_name,
            "isadd": self.is_add,
            "size": self.size,
            "coupon_code_counts": self.coupon_code_count,
            "datetime": self.datetime,
            "status": self.status,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "ProcessedCouponFile":
        """Build a record from its stored form; missing fields take their zero values."""
        return cls(
            id=str(document.get("id", "")),
            md5_hash=str(document.get("md5hash", "")),
            file_name=str(document.get("file_name", "")),
            is_add=bool(document.get("isadd", False)),
            size=int(document.get("size", 0)),
            coupon_code_count=int(document.get("coupon_code_counts", 0)),
            datetime=int(document.get("datetime", 0)),
            status=str(document.get("status", "")),
        )