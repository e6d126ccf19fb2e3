"""Buyer/stylist deduplication and identity consolidation."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from dateutil import parser as date_parser

from ..models.record import (
    ConsolidatedIdentity,
    DuplicateConflict,
    ResolutionStrategy,
    Role,
    SourceIdentity,
    SourceTable,
    StylistDetails,
    UserPreferences,
)

logger = logging.getLogger(__name__)

REASON_BUSINESS_DATA = "Stylist account has business profile data (bio, social media, etc.)"
REASON_DEFAULT = "Default strategy: business account (stylist) takes priority"


class DeduplicationError(Exception):
    """A conflict that cannot be resolved from its own data."""


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a legacy timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = date_parser.parse(str(value))
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso(value: Optional[str]) -> Optional[str]:
    """Normalize a legacy timestamp to ISO 8601 in UTC; unparseable values pass through."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return value
    return parsed.astimezone(timezone.utc).isoformat()


def _pick_timestamp(values: Iterable[Optional[str]], latest: bool) -> Optional[str]:
    """Earliest or latest parseable timestamp, as ISO 8601."""
    parsed = [parse_timestamp(v) for v in values]
    parsed = [dt for dt in parsed if dt is not None]
    if not parsed:
        return None
    chosen = max(parsed) if latest else min(parsed)
    return chosen.astimezone(timezone.utc).isoformat()


@dataclass
class ConsolidationResult:
    """Output of one consolidation run."""
    identities: List[ConsolidatedIdentity] = field(default_factory=list)
    conflicts: List[DuplicateConflict] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def customers(self) -> int:
        return sum(1 for i in self.identities if i.role is Role.CUSTOMER)

    @property
    def stylists(self) -> int:
        return sum(1 for i in self.identities if i.role is Role.STYLIST)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": len(self.identities),
            "customers": self.customers,
            "stylists": self.stylists,
            "conflicts": len(self.conflicts),
            "skipped": self.skipped,
        }


class UserDeduplicator:
    """
    Finds buyer/stylist accounts sharing an email and consolidates them.

    Resolution is deterministic:

    1. A stylist carrying business data wins.
    2. Otherwise the more recently active account wins.
    3. Otherwise the stylist (business account) wins.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def _index(records: Iterable[SourceIdentity]) -> Dict[str, SourceIdentity]:
        """Map normalized email to the first active row carrying it; later rows are ignored."""
        index: Dict[str, SourceIdentity] = {}
        for record in records:
            if record.is_active:
                index.setdefault(record.normalized_email, record)
        return index

    def find_duplicate_emails(
        self,
        buyers: List[SourceIdentity],
        stylists: List[SourceIdentity],
    ) -> List[DuplicateConflict]:
        """
        Build one conflict per email present in both collections.

        Soft-deleted records and records without an email never conflict.
        """
        buyer_index = self._index(buyers)
        stylist_index = self._index(stylists)

        conflicts = []
        for email, buyer in buyer_index.items():
            stylist = stylist_index.get(email)
            if stylist is None:
                continue
            resolution, reason = self.determine_resolution(buyer, stylist)
            conflicts.append(DuplicateConflict(
                email=email,
                buyer_record=buyer,
                stylist_record=stylist,
                resolution=resolution,
                reason=reason,
            ))

        self.logger.info(f"Found {len(conflicts)} duplicate emails across buyers and stylists")
        return conflicts

    def determine_resolution(
        self,
        buyer: SourceIdentity,
        stylist: SourceIdentity,
    ) -> Tuple[ResolutionStrategy, str]:
        """Pick a strategy and the reason string recorded with it."""
        if stylist.has_business_data():
            return ResolutionStrategy.MERGE_TO_SECONDARY_ROLE, REASON_BUSINESS_DATA

        buyer_activity = buyer.last_activity
        stylist_activity = stylist.last_activity
        buyer_time = parse_timestamp(buyer_activity)
        stylist_time = parse_timestamp(stylist_activity)
        if buyer_time and stylist_time and buyer_time > stylist_time:
            return (
                ResolutionStrategy.MERGE_TO_PRIMARY_ROLE,
                f"Buyer account more recently active ({buyer_activity} vs {stylist_activity})",
            )

        return ResolutionStrategy.MERGE_TO_SECONDARY_ROLE, REASON_DEFAULT

    def resolve_conflict(self, conflict: DuplicateConflict) -> Optional[ConsolidatedIdentity]:
        """
        Apply a conflict's resolution.

        Returns None for ``skip``. ``create_separate`` is not supported and
        falls back to the stylist merge.

        Raises:
            DeduplicationError: if the conflict is missing either side
        """
        buyer, stylist = conflict.buyer_record, conflict.stylist_record
        if buyer is None or stylist is None:
            raise DeduplicationError(f"Conflict for {conflict.email} is missing a buyer or stylist record")

        if conflict.resolution is ResolutionStrategy.MERGE_TO_SECONDARY_ROLE:
            return self.merge(winner=stylist, loser=buyer)
        if conflict.resolution is ResolutionStrategy.MERGE_TO_PRIMARY_ROLE:
            return self.merge(winner=buyer, loser=stylist)
        if conflict.resolution is ResolutionStrategy.CREATE_SEPARATE:
            self.logger.warning(
                f"Separate account creation is not supported, merging {conflict.email} into the stylist account"
            )
            return self.merge(winner=stylist, loser=buyer)

        self.logger.info(f"Skipping duplicate user {conflict.email} as requested")
        return None

    def merge(self, winner: SourceIdentity, loser: SourceIdentity) -> ConsolidatedIdentity:
        """Merge two records for the same email, keeping the winner's identity."""
        buyer = winner if winner.source_table is SourceTable.BUYER else loser
        role = winner.source_table.role

        return ConsolidatedIdentity(
            id=winner.id,
            email=winner.email or loser.email,
            role=role,
            source_table=winner.source_table,
            original_id=winner.id,
            full_name=winner.name or loser.name,
            phone_number=winner.phone_number or loser.phone_number,
            bankid_verified=winner.bankid_verified or loser.bankid_verified,
            # Payment customer ids only exist on buyer rows
            stripe_customer_id=buyer.stripe_customer_id,
            created_at=_pick_timestamp([winner.created_at, loser.created_at], latest=False),
            updated_at=_pick_timestamp([winner.updated_at, loser.updated_at], latest=True),
            stylist_details=self._stylist_details(winner) if role is Role.STYLIST else None,
            preferences=UserPreferences.for_role(role, winner.email_enabled, winner.sms_enabled),
        )

    def convert(self, record: SourceIdentity) -> ConsolidatedIdentity:
        """Convert an unconflicted record directly."""
        role = record.source_table.role
        return ConsolidatedIdentity(
            id=record.id,
            email=record.email,
            role=role,
            source_table=record.source_table,
            original_id=record.id,
            full_name=record.name,
            phone_number=record.phone_number,
            bankid_verified=record.bankid_verified,
            stripe_customer_id=record.stripe_customer_id if role is Role.CUSTOMER else None,
            created_at=to_iso(record.created_at),
            updated_at=to_iso(record.updated_at),
            stylist_details=self._stylist_details(record) if role is Role.STYLIST else None,
            preferences=UserPreferences.for_role(role, record.email_enabled, record.sms_enabled),
        )

    @staticmethod
    def _stylist_details(stylist: SourceIdentity) -> StylistDetails:
        return StylistDetails(
            bio=stylist.bio,
            can_travel=stylist.can_travel,
            has_own_place=stylist.has_own_place,
            travel_distance_km=stylist.travel_distance,
            instagram_profile=stylist.instagram_profile,
            facebook_profile=stylist.facebook_profile,
            other_social_media_urls=[stylist.twitter_profile] if stylist.twitter_profile else [],
            stripe_account_id=stylist.stripe_account_id,
        )

    def consolidate_users(
        self,
        buyers: List[SourceIdentity],
        stylists: List[SourceIdentity],
        conflicts: Optional[List[DuplicateConflict]] = None,
    ) -> ConsolidationResult:
        """
        Produce one identity stream from both collections.

        Conflicts are resolved first and their emails marked consumed. Every
        remaining active record is then converted directly. Inactive records
        and records excluded because their email was consumed are listed in
        ``skipped`` with a reason.
        """
        if conflicts is None:
            conflicts = self.find_duplicate_emails(buyers, stylists)

        result = ConsolidationResult(conflicts=list(conflicts))
        consumed_emails: Set[str] = set()
        consumed_records: Set[Tuple[SourceTable, str]] = set()

        for conflict in conflicts:
            identity = self.resolve_conflict(conflict)
            consumed_emails.add(conflict.email.lower())
            consumed_records.add((SourceTable.BUYER, conflict.buyer_record.id))
            consumed_records.add((SourceTable.STYLIST, conflict.stylist_record.id))
            if identity is None:
                result.skipped.append({"email": conflict.email, "reason": "Duplicate resolution: skip"})
                continue
            result.identities.append(identity)

        for record in list(buyers) + list(stylists):
            if (record.source_table, record.id) in consumed_records:
                continue
            if not record.is_active:
                reason = "Soft-deleted" if record.is_deleted else "Missing email"
                result.skipped.append(self._skip_entry(record, reason))
                continue
            if record.normalized_email in consumed_emails:
                result.skipped.append(self._skip_entry(record, "Email already consolidated from a duplicate"))
                continue
            result.identities.append(self.convert(record))
            consumed_emails.add(record.normalized_email)

        self.logger.info(
            f"Consolidated {len(result.identities)} users "
            f"({result.customers} customers, {result.stylists} stylists), "
            f"{len(result.skipped)} skipped"
        )
        return result

    @staticmethod
    def _skip_entry(record: SourceIdentity, reason: str) -> Dict[str, Any]:
        return {
            "id": record.id,
            "source_table": record.source_table.value,
            "email": record.email,
            "reason": reason,
        }

    @staticmethod
    def summarize_resolutions(conflicts: List[DuplicateConflict]) -> Dict[str, int]:
        """Count conflicts per resolution strategy."""
        counts = Counter(c.resolution.value for c in conflicts)
        return {strategy.value: counts.get(strategy.value, 0) for strategy in ResolutionStrategy}
