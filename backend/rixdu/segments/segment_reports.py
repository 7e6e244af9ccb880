from __future__ import annotations

from flask import Blueprint, request

from rixdu.services import listing_service, report_service
from rixdu.utils.auth import current_user, is_admin, require_user
from rixdu.utils.http import forbidden, json_body, success, unauthorized

reports_bp = Blueprint("reports_bp", __name__, url_prefix="/api/reports")


def _require_admin():
    user = current_user()
    if not user:
        return None, unauthorized()
    if not is_admin(user):
        return None, forbidden("Admin access required")
    return user, None


@reports_bp.post("")
@reports_bp.post("/")
def create_report():
    user = require_user()
    report = report_service.create_report(user, json_body())
    return success(report_service.serialize([report])[0], message="Report submitted successfully", status=201)


@reports_bp.get("/my-reports")
def my_reports():
    user = require_user()
    rows = report_service.reports_by_user(int(user.id))
    return success(report_service.serialize(rows), count=len(rows))


@reports_bp.get("/all")
def all_reports():
    _user, err = _require_admin()
    if err:
        return err
    rows, pagination = report_service.list_reports(request.args)
    return success(report_service.serialize(rows), count=len(rows), total=pagination["total"], pagination=pagination)


@reports_bp.get("/listing/<listing_id>")
def listing_reports(listing_id: str):
    _user, err = _require_admin()
    if err:
        return err
    listing = listing_service.get_listing(listing_id)
    rows = report_service.reports_for_listing(int(listing.id))
    return success(report_service.serialize(rows), count=len(rows))


@reports_bp.get("/<report_id>")
def report_details(report_id: str):
    _user, err = _require_admin()
    if err:
        return err
    report = report_service.get_report(report_id)
    return success(report_service.serialize([report])[0])


@reports_bp.put("/<report_id>/status")
def update_report_status(report_id: str):
    admin, err = _require_admin()
    if err:
        return err
    report = report_service.set_report_status(report_service.get_report(report_id), admin, json_body())
    return success(report_service.serialize([report])[0], message="Report status updated successfully")
