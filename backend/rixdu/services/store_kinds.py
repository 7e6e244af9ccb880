from __future__ import annotations

import re

from rixdu.extensions import db
from rixdu.models import Category, Store
from rixdu.models.store import (
    STORE_KIND_CLASSIFIEDS,
    STORE_KIND_GENERAL,
    STORE_KIND_HEALTHCARE,
    STORE_KIND_JOBS,
    STORE_KIND_PROPERTY,
    STORE_KIND_VEHICLES,
)


# Used only to backfill legacy rows; new stores declare their kind.
_KIND_PATTERNS = (
    (STORE_KIND_JOBS, re.compile(r"\b(jobs?|careers?|hiring|vacanc(y|ies)|employment)\b", re.I)),
    (STORE_KIND_VEHICLES, re.compile(r"\b(vehicles?|motors?|cars?|autos?|bikes?|motorcycles?)\b", re.I)),
    (STORE_KIND_HEALTHCARE, re.compile(r"\b(health(care)?|clinics?|doctors?|medical|pharmac(y|ies))\b", re.I)),
    (STORE_KIND_PROPERTY, re.compile(r"\b(property|properties|real[\s-]?estate|rentals?|homes?)\b", re.I)),
    (STORE_KIND_CLASSIFIEDS, re.compile(r"\b(classifieds?|marketplace|buy[\s-]?sell)\b", re.I)),
)


def classify(name: str, slug: str = "") -> str:
    text = f"{name or ''} {(slug or '').replace('-', ' ')}"
    for kind, pattern in _KIND_PATTERNS:
        if pattern.search(text):
            return kind
    return STORE_KIND_GENERAL


def backfill_store_kinds(*, dry_run: bool = False, only_general: bool = True) -> list[tuple[str, str, str]]:
    """Assign kinds to stores; returns ``(slug, old, new)`` for each change."""
    changes = []
    for store in Store.query.order_by(Store.id.asc()).all():
        if only_general and store.kind not in (None, "", STORE_KIND_GENERAL):
            continue
        kind = classify(store.name, store.slug)
        if kind == (store.kind or STORE_KIND_GENERAL):
            continue
        changes.append((store.slug, store.kind or "", kind))
        if not dry_run:
            old = store.kind
            store.kind = kind
            Category.query.filter(
                Category.store_id == int(store.id),
                _inherits_kind(old),
            ).update({Category.kind: kind}, synchronize_session=False)
    if dry_run:
        db.session.rollback()
    else:
        db.session.commit()
    return changes


def _inherits_kind(old_kind):
    return Category.kind.is_(None) | (Category.kind == (old_kind or STORE_KIND_GENERAL))
