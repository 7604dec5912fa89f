"""
System slugs — URL keys derived from the system name.

Slugs are assigned when a System is created and are not rewritten on
rename; ``flask systems generate-slugs`` backfills or (with ``--force``)
regenerates them.  Uniqueness is checked against every row, deleted
systems included, by appending ``-1``, ``-2``, … to the base slug.
"""

import logging
import re
import unicodedata

from tracker.models import db
from tracker.models.hierarchy import System

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
FALLBACK_SLUG = "system"


def slugify(text: str) -> str:
    """ASCII-fold, lower-case and hyphenate ``text`` ("Billing & CRM" → "billing-crm")."""
    folded = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    folded = folded.replace("@", " at ")
    return _NON_ALNUM.sub("-", folded.lower()).strip("-")


def slug_taken(slug: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(System.id).filter(System.slug == slug)
    if exclude_id is not None:
        query = query.filter(System.id != exclude_id)
    return query.first() is not None


def unique_slug(name: str, exclude_id: int | None = None) -> str:
    base = slugify(name) or FALLBACK_SLUG
    slug = base
    counter = 1
    while slug_taken(slug, exclude_id):
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def assign_slug(system: System, clean: dict, is_new: bool) -> None:
    """``before_save`` hook for the systems resource: slug on create only."""
    if is_new or not system.slug:
        system.slug = unique_slug(system.name, exclude_id=system.id)


def generate_system_slugs(force: bool = False) -> int:
    """Backfill missing slugs, or regenerate all of them when ``force``.

    Returns the number of systems updated.  Commits on success.
    """
    query = System.query_active().order_by(System.id)
    if not force:
        query = query.filter(db.or_(System.slug.is_(None), System.slug == ""))
    systems = query.all()

    updated = 0
    try:
        if force:
            # Slugs are reassigned in id order from a clean slate
            for system in systems:
                system.slug = None
            db.session.flush()
        for system in systems:
            system.slug = unique_slug(system.name, exclude_id=system.id)
            db.session.flush()
            updated += 1
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Slug generation failed after %d systems", updated)
        raise

    logger.info("Generated slugs for %d systems (force=%s)", updated, force)
    return updated
