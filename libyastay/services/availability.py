# Availability ledger and stay pricing.
# The ledger only records exceptions: a date with no row is available at the base price.
import logging
import os
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from .admin import record_override

logger = logging.getLogger("libyastay.availability")

# Platform fee charged on top of the nightly subtotal, in percent
SERVICE_FEE_PERCENT = Decimal(os.getenv("SERVICE_FEE_PERCENT", "10"))


def stay_nights(check_in: date, check_out: date) -> List[date]:
    """Dates occupied by a stay: the half-open range [check_in, check_out)."""
    return [check_in + timedelta(days=i) for i in range((check_out - check_in).days)]


def upsert_availability(
    db: Session,
    property_id: str,
    day: date,
    is_available: bool,
    price_override_cents: Optional[int],
) -> models.AvailabilityRecord:
    """
    Idempotent write keyed by (property_id, date); the last write wins.

    Stages the change without committing.
    """
    record = (
        db.query(models.AvailabilityRecord)
        .filter(models.AvailabilityRecord.property_id == property_id, models.AvailabilityRecord.date == day)
        .first()
    )
    if record is None:
        record = models.AvailabilityRecord(property_id=property_id, date=day)
        db.add(record)
    record.is_available = is_available
    record.price_override_cents = price_override_cents
    return record


def save_availability(
    db: Session, actor: models.User, prop: models.Property, entries: List[schemas.AvailabilityUpsert]
) -> List[models.AvailabilityRecord]:
    property_id = prop.property_id
    # Later entries for the same date win
    by_date = {e.date: e for e in entries}
    # A concurrent insert of the same (property, date) fails the unique constraint;
    # the retry then finds the row and updates it.
    for attempt in (1, 2):
        try:
            records = [
                upsert_availability(db, property_id, e.date, e.is_available, e.price_override_cents)
                for e in by_date.values()
            ]
            record_override(
                db,
                actor,
                (prop.host_id,),
                "availability_update",
                "property",
                property_id,
                {"dates": sorted(by_date)},
            )
            db.commit()
            break
        except IntegrityError:
            db.rollback()
            if attempt == 2:
                raise
        except SQLAlchemyError:
            db.rollback()
            raise
    for r in records:
        db.refresh(r)
    logger.info("availability.upserted", extra={"property_id": property_id, "count": len(records)})
    return sorted(records, key=lambda r: r.date)


def query_availability(
    db: Session, property_id: str, start: Optional[date] = None, end: Optional[date] = None
) -> List[models.AvailabilityRecord]:
    """Ledger rows for the property with start <= date <= end, ascending by date."""
    q = db.query(models.AvailabilityRecord).filter(models.AvailabilityRecord.property_id == property_id)
    if start is not None:
        q = q.filter(models.AvailabilityRecord.date >= start)
    if end is not None:
        q = q.filter(models.AvailabilityRecord.date <= end)
    return q.order_by(models.AvailabilityRecord.date.asc()).all()


def blocked_dates(db: Session, property_id: str, check_in: date, check_out: date) -> List[date]:
    rows = (
        db.query(models.AvailabilityRecord.date)
        .filter(
            models.AvailabilityRecord.property_id == property_id,
            models.AvailabilityRecord.date >= check_in,
            models.AvailabilityRecord.date < check_out,
            models.AvailabilityRecord.is_available.is_(False),
        )
        .order_by(models.AvailabilityRecord.date.asc())
        .all()
    )
    return [r[0] for r in rows]


def is_property_available(db: Session, property_id: str, check_in: date, check_out: date) -> bool:
    """False iff some date in [check_in, check_out) is explicitly marked unavailable."""
    return not blocked_dates(db, property_id, check_in, check_out)


def blocked_property_ids(check_in: date, check_out: date):
    """Subquery of property ids with at least one blocked date in [check_in, check_out); used by search."""
    return (
        select(models.AvailabilityRecord.property_id)
        .where(
            models.AvailabilityRecord.date >= check_in,
            models.AvailabilityRecord.date < check_out,
            models.AvailabilityRecord.is_available.is_(False),
        )
        .distinct()
    )


def has_confirmed_overlap(
    db: Session, property_id: str, check_in: date, check_out: date, exclude_booking_id: Optional[str] = None
) -> bool:
    """
    True if any confirmed booking other than ``exclude_booking_id`` overlaps [check_in, check_out).

    NOT (existing.check_out <= check_in OR existing.check_in >= check_out)
    """
    q = db.query(models.Booking.booking_id).filter(
        models.Booking.property_id == property_id,
        models.Booking.status == "confirmed",
        ~(
            (models.Booking.check_out <= check_in)
            | (models.Booking.check_in >= check_out)
        ),
    )
    if exclude_booking_id is not None:
        q = q.filter(models.Booking.booking_id != exclude_booking_id)
    return q.first() is not None


def service_fee_cents(subtotal_cents: int) -> int:
    fee = Decimal(subtotal_cents) * SERVICE_FEE_PERCENT / Decimal(100)
    return int(fee.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def quote_stay(db: Session, prop: models.Property, check_in: date, check_out: date) -> schemas.StayQuote:
    """
    Price a stay night by night: a ledger price override wins over the base price.
    """
    overrides = {
        r.date: r.price_override_cents
        for r in query_availability(db, prop.property_id, check_in, check_out - timedelta(days=1))
        if r.price_override_cents is not None
    }
    rates = [
        schemas.NightlyRate(date=night, price_cents=overrides.get(night, prop.base_price_cents))
        for night in stay_nights(check_in, check_out)
    ]
    subtotal = sum(r.price_cents for r in rates)
    fee = service_fee_cents(subtotal)
    available = (
        is_property_available(db, prop.property_id, check_in, check_out)
        and not has_confirmed_overlap(db, prop.property_id, check_in, check_out)
    )
    return schemas.StayQuote(
        property_id=prop.property_id,
        check_in=check_in,
        check_out=check_out,
        nights=len(rates),
        nightly_rates=rates,
        subtotal_cents=subtotal,
        service_fee_cents=fee,
        total_cents=subtotal + fee,
        currency=prop.currency,
        available=available,
    )
