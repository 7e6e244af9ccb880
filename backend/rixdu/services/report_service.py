from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError

from rixdu.extensions import db
from rixdu.models import Listing, Report, User
from rixdu.models.report import REPORT_REASONS, REPORT_STATUSES
from rixdu.services.errors import Conflict, NotFound, ValidationFailed
from rixdu.services.listing_query import int_arg, page_meta


DESCRIPTION_MAX = 500
ADMIN_PAGE_LIMIT = 10


def _listing_ref(listing: Listing | None) -> dict | None:
    if listing is None:
        return None
    return {
        "id": int(listing.id),
        "slug": listing.slug,
        "title": listing.title or "",
        "category_id": int(listing.category_id),
    }


def _user_ref(user: User | None) -> dict | None:
    if user is None:
        return None
    return {"id": int(user.id), "name": user.name or "", "email": user.email or ""}


def serialize(reports: list[Report]) -> list[dict]:
    """Expand listing and user ids into the small refs clients render."""
    listing_ids = {int(r.listing_id) for r in reports}
    user_ids = set()
    for r in reports:
        user_ids.update(i for i in (r.reported_by_id, r.reported_user_id, r.reviewed_by_id) if i)
    listings = {int(l.id): l for l in Listing.query.filter(Listing.id.in_(listing_ids)).all()} if listing_ids else {}
    users = {int(u.id): u for u in User.query.filter(User.id.in_(user_ids)).all()} if user_ids else {}
    items = []
    for report in reports:
        item = report.to_dict()
        item["listing"] = _listing_ref(listings.get(int(report.listing_id)))
        item["reported_by"] = _user_ref(users.get(int(report.reported_by_id)))
        item["reported_user"] = _user_ref(users.get(int(report.reported_user_id)))
        if report.reviewed_by_id:
            item["reviewed_by"] = _user_ref(users.get(int(report.reviewed_by_id)))
        items.append(item)
    return items


def create_report(reporter: User, data: dict) -> Report:
    listing_ref = data.get("listing_id", data.get("listingId"))
    reason = str(data.get("reason") or "").strip().lower()
    description = str(data.get("description") or "").strip()
    errors = []
    if listing_ref in (None, ""):
        errors.append({"field": "listingId", "message": "Field 'listingId' is required"})
    if not reason:
        errors.append({"field": "reason", "message": "Field 'reason' is required"})
    elif reason not in REPORT_REASONS:
        errors.append({"field": "reason", "message": "Field 'reason' must be one of the following values: " + ", ".join(REPORT_REASONS)})
    if not description:
        errors.append({"field": "description", "message": "Field 'description' is required"})
    elif len(description) > DESCRIPTION_MAX:
        errors.append({"field": "description", "message": f"Field 'description' must be at most {DESCRIPTION_MAX} characters"})
    if errors:
        raise ValidationFailed(errors=errors)

    from rixdu.services.listing_service import get_listing

    listing = get_listing(listing_ref)
    if int(listing.user_id) == int(reporter.id):
        raise ValidationFailed("You cannot report your own listing")
    if Report.query.filter_by(listing_id=int(listing.id), reported_by_id=int(reporter.id)).first() is not None:
        raise Conflict("You have already reported this listing", code="DUPLICATE_REPORT")

    report = Report(
        listing_id=int(listing.id),
        reported_by_id=int(reporter.id),
        reported_user_id=int(listing.user_id),
        reason=reason,
        description=description,
        status="pending",
    )
    db.session.add(report)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("You have already reported this listing", code="DUPLICATE_REPORT")
    return report


def get_report(report_id) -> Report:
    try:
        ident = int(str(report_id).strip())
    except (TypeError, ValueError):
        raise NotFound("Report not found")
    report = db.session.get(Report, ident)
    if report is None:
        raise NotFound("Report not found")
    return report


def list_reports(args) -> tuple[list[Report], dict]:
    page = int_arg(args, "page", 1)
    limit = int_arg(args, "limit", ADMIN_PAGE_LIMIT, maximum=100)
    status = str(args.get("status") or "all").strip().lower()
    query = Report.query
    if status != "all":
        if status not in REPORT_STATUSES:
            raise ValidationFailed(errors=[{"field": "status", "message": "Invalid status"}])
        query = query.filter(Report.status == status)
    total = query.count()
    rows = query.order_by(Report.created_at.desc(), Report.id.desc()).offset((page - 1) * limit).limit(limit).all()
    meta = page_meta(page, limit, total)
    meta["has_more"] = page < meta["pages"]
    return rows, meta


def reports_for_listing(listing_id: int) -> list[Report]:
    return Report.query.filter_by(listing_id=int(listing_id)).order_by(Report.created_at.desc(), Report.id.desc()).all()


def reports_by_user(user_id: int) -> list[Report]:
    return Report.query.filter_by(reported_by_id=int(user_id)).order_by(Report.created_at.desc(), Report.id.desc()).all()


def set_report_status(report: Report, reviewer: User, data: dict) -> Report:
    status = str(data.get("status") or "").strip().lower()
    if status not in REPORT_STATUSES:
        raise ValidationFailed("Invalid status", [{"field": "status", "message": "Field 'status' must be one of the following values: " + ", ".join(REPORT_STATUSES)}])
    note = str(data.get("admin_note") or data.get("adminNote") or "").strip()
    if len(note) > DESCRIPTION_MAX:
        raise ValidationFailed(errors=[{"field": "adminNote", "message": f"Field 'adminNote' must be at most {DESCRIPTION_MAX} characters"}])
    report.status = status
    if note:
        report.admin_note = note
    report.reviewed_by_id = int(reviewer.id)
    report.reviewed_at = datetime.utcnow()
    db.session.commit()
    return report
