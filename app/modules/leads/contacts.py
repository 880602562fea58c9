"""
Contact Resolver: finds or creates the canonical contact for a submission.

Contacts are keyed by lowercase email and by the SHA-256 hash of the E.164 phone.
An email match always wins over a phone match. Matched contacts are only
backfilled: a field that already holds a value is never overwritten.
"""

import logging

from app.models.contact import Contact
from app.modules.leads import store
from app.modules.leads.errors import DB_ERRORS, PersistenceError
from app.modules.leads.phone import normalize_email, normalize_phone, phone_hash

logger = logging.getLogger(__name__)


async def resolve_contact(
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> Contact:
    """Return the existing contact for this email/phone, or create one."""
    email_lower = normalize_email(email)
    normalized_phone = normalize_phone(phone)
    hashed_phone = phone_hash(normalized_phone)

    try:
        by_email = await store.find_contact_by_email(email_lower)
        by_phone = await store.find_contact_by_phone_hash(hashed_phone) if hashed_phone else None
    except DB_ERRORS as e:
        raise PersistenceError(f"Contact lookup failed: {e}") from e

    existing = _pick_canonical(by_email, by_phone, email_lower)
    if existing:
        # The phone belongs to another contact; moving it would break phone_hash uniqueness
        phone_taken = by_phone is not None and by_phone["id"] != existing["id"]
        return await _backfill(existing, first_name, last_name, None if phone_taken else normalized_phone)

    return await _create(email_lower, first_name, last_name, normalized_phone, hashed_phone)


def _pick_canonical(by_email: dict | None, by_phone: dict | None, email: str) -> dict | None:
    if by_email and by_phone and by_email["id"] != by_phone["id"]:
        logger.warning(
            "Email %s and phone match different contacts (%s, %s); using the email match",
            email,
            by_email["id"],
            by_phone["id"],
        )
    return by_email or by_phone


async def _backfill(
    existing: dict,
    first_name: str | None,
    last_name: str | None,
    normalized_phone: str | None,
) -> Contact:
    updates = {}
    if first_name and not existing.get("first_name"):
        updates["first_name"] = first_name
    if last_name and not existing.get("last_name"):
        updates["last_name"] = last_name
    if normalized_phone and not existing.get("phone"):
        updates["phone"] = normalized_phone
        updates["phone_hash"] = phone_hash(normalized_phone)

    if not updates:
        return Contact(**existing)

    try:
        updated = await store.update_contact(existing["id"], updates)
    except DB_ERRORS as e:
        raise PersistenceError(f"Contact update failed for {existing['id']}: {e}") from e

    logger.info("Contact %s backfilled: %s", existing["id"], sorted(updates))
    return Contact(**(updated or {**existing, **updates}))


async def _create(
    email: str,
    first_name: str | None,
    last_name: str | None,
    normalized_phone: str | None,
    hashed_phone: str | None,
) -> Contact:
    try:
        row = await store.insert_contact(email, first_name, last_name, normalized_phone, hashed_phone)
    except DB_ERRORS as e:
        # Lost a race with a concurrent submission for the same email: use the winner's row
        logger.warning("Contact insert failed for %s (%s), re-querying by email", email, type(e).__name__)
        try:
            fallback = await store.find_contact_by_email(email)
        except DB_ERRORS as lookup_error:
            raise PersistenceError(f"Contact fallback lookup failed: {lookup_error}") from lookup_error
        if fallback:
            return Contact(**fallback)
        raise PersistenceError(f"Contact insert failed: {e}") from e

    logger.info("Contact created: %s (%s)", row["id"], email)
    return Contact(**row)
