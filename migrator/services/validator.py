"""Field-level and cross-record validation for identities."""

import re
import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from ..models.record import (
    ConsolidatedIdentity,
    Role,
    SourceIdentity,
    ValidationError,
)
from .deduplicator import parse_timestamp

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]{8,20}$")
ISO_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})?$"
)
INSTAGRAM_PATTERN = re.compile(r"^https://www\.instagram\.com/[\w.-]+/$", re.IGNORECASE)
FACEBOOK_PATTERN = re.compile(r"^https://www\.facebook\.com/[\w.-]+/$", re.IGNORECASE)

MAX_TRAVEL_DISTANCE_KM = 1000

DUPLICATE_ID = "Duplicate user ID found"
DUPLICATE_EMAIL = "Duplicate email found"


class IdentityConflictError(Exception):
    """Duplicate ids or emails survived consolidation."""

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        super().__init__(f"{len(errors)} duplicate identities in consolidated set")


def is_valid_uuid(value: Optional[str]) -> bool:
    return bool(value) and bool(UUID_PATTERN.match(value))


def is_valid_email(value: Optional[str]) -> bool:
    return bool(value) and bool(EMAIL_PATTERN.match(value))


def is_valid_phone(value: Optional[str]) -> bool:
    return bool(value) and bool(PHONE_PATTERN.match(value))


def is_valid_date(value: Optional[str]) -> bool:
    parsed = parse_timestamp(value)
    return parsed is not None and parsed.timestamp() > 0


def is_valid_iso_date(value: Optional[str]) -> bool:
    return bool(value) and bool(ISO_PATTERN.match(value)) and is_valid_date(value)


def _normalize_profile_url(url: str, domain: str, aliases: List[str]) -> str:
    clean = url.strip()
    if clean.startswith("@"):
        clean = clean[1:]

    if not any(alias in clean for alias in [domain] + aliases):
        return f"https://www.{domain}/{clean}/"

    if not clean.startswith("http"):
        clean = "https://" + clean

    for alias in aliases:
        clean = re.sub(rf"^https?://(www\.)?{re.escape(alias)}", f"https://www.{domain}", clean)
    clean = re.sub(rf"^https?://(?!www\.){re.escape(domain)}", f"https://www.{domain}", clean)

    match = re.search(rf"{re.escape(domain)}/([^/?#]+)", clean, re.IGNORECASE)
    if match:
        return f"https://www.{domain}/{match.group(1)}/"
    return clean


def normalize_instagram_url(url: Optional[str]) -> Optional[str]:
    """Normalize a handle or URL to ``https://www.instagram.com/<user>/``."""
    if not url:
        return url
    return _normalize_profile_url(url, "instagram.com", [])


def normalize_facebook_url(url: Optional[str]) -> Optional[str]:
    """Normalize a handle or URL to ``https://www.facebook.com/<user>/``."""
    if not url:
        return url
    return _normalize_profile_url(url, "facebook.com", ["fb.com"])


class IdentityValidator:
    """
    Validator for source and consolidated identities.

    Never raises for bad records: every problem becomes a ValidationError.
    Only ``assert_unique`` raises, and only for duplicates that would break
    the consolidated set.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def _shared_checks(self, record: SourceIdentity, table: str) -> List[ValidationError]:
        errors = []
        record_id = record.id or "unknown"

        if not record.id:
            errors.append(ValidationError(record_id, table, "id", "ID is required", record.id))
        if not record.email:
            errors.append(ValidationError(record_id, table, "email", "Email is required", record.email))
        if record.id and not is_valid_uuid(record.id):
            errors.append(ValidationError(record_id, table, "id", "Invalid UUID format", record.id))
        if record.email and not is_valid_email(record.email):
            errors.append(ValidationError(record_id, table, "email", "Invalid email format", record.email))
        if record.phone_number and not is_valid_phone(record.phone_number):
            errors.append(ValidationError(
                record_id, table, "phone_number", "Invalid phone number format", record.phone_number
            ))
        for field_name in ("created_at", "updated_at"):
            value = getattr(record, field_name)
            if value and not is_valid_date(value):
                errors.append(ValidationError(record_id, table, field_name, "Invalid date format", value))
        return errors

    def validate_buyers(self, buyers: List[SourceIdentity]) -> List[ValidationError]:
        """Validate legacy buyer rows."""
        self.logger.info("Validating buyer records")
        errors = []
        for buyer in buyers:
            errors.extend(self._shared_checks(buyer, "buyer"))
        self.logger.info(f"Buyer validation completed. Found {len(errors)} errors")
        return errors

    def validate_stylists(self, stylists: List[SourceIdentity]) -> List[ValidationError]:
        """Validate legacy stylist rows, including business profile fields."""
        self.logger.info("Validating stylist records")
        errors = []
        for stylist in stylists:
            errors.extend(self._shared_checks(stylist, "stylist"))
            record_id = stylist.id or "unknown"

            distance = stylist.travel_distance
            if distance is not None and not 0 <= distance <= MAX_TRAVEL_DISTANCE_KM:
                errors.append(ValidationError(
                    record_id, "stylist", "travel_distance",
                    f"Travel distance must be between 0 and {MAX_TRAVEL_DISTANCE_KM} km", distance,
                ))

            if stylist.instagram_profile and not INSTAGRAM_PATTERN.match(
                normalize_instagram_url(stylist.instagram_profile)
            ):
                errors.append(ValidationError(
                    record_id, "stylist", "instagram_profile",
                    "Invalid Instagram URL format", stylist.instagram_profile,
                ))
            if stylist.facebook_profile and not FACEBOOK_PATTERN.match(
                normalize_facebook_url(stylist.facebook_profile)
            ):
                errors.append(ValidationError(
                    record_id, "stylist", "facebook_profile",
                    "Invalid Facebook URL format", stylist.facebook_profile,
                ))

        self.logger.info(f"Stylist validation completed. Found {len(errors)} errors")
        return errors

    def validate_consolidated(self, identities: List[ConsolidatedIdentity]) -> List[ValidationError]:
        """
        Validate the consolidated set before it is written.

        Checks uniqueness of ids and case-insensitive emails across the whole
        set, formats, the closed role set, and that stylist details are
        present exactly when the role is stylist.
        """
        self.logger.info("Validating consolidated user records")
        errors = []
        seen_ids = set()
        seen_emails = set()

        for identity in identities:
            record_id = identity.id or "unknown"
            table = identity.source_table.value

            if identity.id in seen_ids:
                errors.append(ValidationError(record_id, table, "id", DUPLICATE_ID, identity.id))
            seen_ids.add(identity.id)

            email_key = (identity.email or "").lower()
            if email_key in seen_emails:
                errors.append(ValidationError(record_id, table, "email", DUPLICATE_EMAIL, identity.email))
            seen_emails.add(email_key)

            if not identity.id:
                errors.append(ValidationError(record_id, table, "id", "ID is required", identity.id))
            elif not is_valid_uuid(identity.id):
                errors.append(ValidationError(record_id, table, "id", "Invalid UUID format", identity.id))

            if not identity.email:
                errors.append(ValidationError(record_id, table, "email", "Email is required", identity.email))
            elif not is_valid_email(identity.email):
                errors.append(ValidationError(record_id, table, "email", "Invalid email format", identity.email))

            role = getattr(identity.role, "value", identity.role)
            if role not in (Role.CUSTOMER.value, Role.STYLIST.value):
                errors.append(ValidationError(
                    record_id, table, "role", 'Invalid role. Must be "customer" or "stylist"', role
                ))
            if role == Role.STYLIST.value and identity.stylist_details is None:
                errors.append(ValidationError(
                    record_id, table, "stylist_details", "Stylist role requires stylist_details"
                ))
            if role == Role.CUSTOMER.value and identity.stylist_details is not None:
                errors.append(ValidationError(
                    record_id, table, "stylist_details",
                    "Customer role should not have stylist_details", "not null",
                ))

            for field_name in ("created_at", "updated_at"):
                value = getattr(identity, field_name)
                if not is_valid_iso_date(value):
                    errors.append(ValidationError(
                        record_id, table, field_name, f"Invalid ISO date format for {field_name}", value
                    ))

        self.logger.info(f"Consolidated user validation completed. Found {len(errors)} errors")
        return errors

    def assert_unique(self, errors: List[ValidationError]) -> None:
        """Raise IdentityConflictError if any duplicate id/email errors are present."""
        duplicates = [e for e in errors if e.message in (DUPLICATE_ID, DUPLICATE_EMAIL)]
        if duplicates:
            raise IdentityConflictError(duplicates)

    @staticmethod
    def validation_summary(errors: List[ValidationError]) -> Dict[str, Any]:
        """Group errors by table, field and message."""
        return {
            "total_errors": len(errors),
            "errors_by_table": dict(Counter(e.table for e in errors)),
            "errors_by_field": dict(Counter(e.field for e in errors)),
            "errors_by_type": dict(Counter(e.message for e in errors)),
        }
