# Overview: Minimal vendor reference data for expense records.

from __future__ import annotations

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Vendor
from .concurrency import run_with_retry
from .document_service import next_document_number


def get_vendor(vendor_id: int) -> Vendor:
    vendor = db.session.get(Vendor, vendor_id)
    if not vendor:
        raise NotFoundError(f"Vendor {vendor_id} not found")
    return vendor


def list_vendors(is_active: bool | None = None) -> list[Vendor]:
    query = db.session.query(Vendor)
    if is_active is not None:
        query = query.filter(Vendor.is_active.is_(is_active))
    return query.order_by(Vendor.name.asc()).all()


def create_vendor(
    name: str,
    contact_person: str | None = None,
    email: str | None = None,
    phone: str | None = None,
) -> Vendor:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Vendor name is required")

    def _op():
        if db.session.query(Vendor).filter_by(name=name).first():
            raise ConflictError(f"Vendor {name} already exists")
        vendor = Vendor(
            vendor_code=next_document_number(document_type="vendor", prefix="VND", pad=4),
            name=name,
            contact_person=contact_person,
            email=email,
            phone=phone,
            is_active=True,
        )
        db.session.add(vendor)
        db.session.flush()
        return vendor

    return run_with_retry(_op)


def deactivate_vendor(vendor_id: int) -> Vendor:
    def _op():
        vendor = get_vendor(vendor_id)
        vendor.is_active = False
        db.session.flush()
        return vendor

    return run_with_retry(_op)
