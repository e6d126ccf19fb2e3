"""Identity models for the user consolidation steps."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


class Role(str, Enum):
    """Role of a consolidated identity in the target system."""
    CUSTOMER = "customer"
    STYLIST = "stylist"


class SourceTable(str, Enum):
    """Legacy table a source identity was extracted from."""
    BUYER = "buyer"
    STYLIST = "stylist"

    @property
    def role(self) -> Role:
        return Role.CUSTOMER if self is SourceTable.BUYER else Role.STYLIST


class ResolutionStrategy(str, Enum):
    """How a duplicate email conflict is resolved.

    The buyer side of a conflict is the primary role, the stylist side the
    secondary role.
    """
    MERGE_TO_PRIMARY_ROLE = "merge_to_primary_role"
    MERGE_TO_SECONDARY_ROLE = "merge_to_secondary_role"
    CREATE_SEPARATE = "create_separate"
    SKIP = "skip"


def _as_bool(value: Any) -> bool:
    """Coerce legacy MySQL flags (0/1, "0"/"1", "true") to bool."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("1", "true", "yes", "y")


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class SourceIdentity:
    """A raw buyer or stylist row from the legacy dump.

    Buyers only populate the shared fields; the business fields (bio, social
    links, payment account, travel flags) exist on stylist rows only.
    """
    id: str
    source_table: SourceTable
    email: Optional[str] = None
    name: Optional[str] = None
    phone_number: Optional[str] = None
    bankid_verified: bool = False
    last_login_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    sms_enabled: bool = True
    email_enabled: bool = True

    # Stylist-only
    bio: Optional[str] = None
    can_travel: bool = False
    has_own_place: bool = False
    travel_distance: Optional[float] = None
    instagram_profile: Optional[str] = None
    facebook_profile: Optional[str] = None
    twitter_profile: Optional[str] = None
    stripe_account_id: Optional[str] = None

    @property
    def normalized_email(self) -> Optional[str]:
        return self.email.strip().lower() if self.email else None

    @property
    def is_deleted(self) -> bool:
        return bool(self.deleted_at)

    @property
    def is_active(self) -> bool:
        """Active records are not soft-deleted and carry an email."""
        return not self.is_deleted and bool(self.normalized_email)

    @property
    def last_activity(self) -> Optional[str]:
        return self.last_login_at or self.updated_at

    def has_business_data(self) -> bool:
        """True when the row carries stylist business profile data."""
        return bool(
            self.bio
            or self.instagram_profile
            or self.facebook_profile
            or self.twitter_profile
            or self.stripe_account_id
            or self.can_travel
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data = {
            "id": self.id,
            "source_table": self.source_table.value,
            "email": self.email,
            "name": self.name,
            "phone_number": self.phone_number,
            "bankid_verified": self.bankid_verified,
            "last_login_at": self.last_login_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
            "stripe_customer_id": self.stripe_customer_id,
            "sms_enabled": self.sms_enabled,
            "email_enabled": self.email_enabled,
        }
        if self.source_table is SourceTable.STYLIST:
            data.update({
                "bio": self.bio,
                "can_travel": self.can_travel,
                "has_own_place": self.has_own_place,
                "travel_distance": self.travel_distance,
                "instagram_profile": self.instagram_profile,
                "facebook_profile": self.facebook_profile,
                "twitter_profile": self.twitter_profile,
                "stripe_account_id": self.stripe_account_id,
            })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source_table: Optional[SourceTable] = None) -> "SourceIdentity":
        """Create from a dump row or a serialized identity."""
        table = source_table or SourceTable(data.get("source_table", "buyer"))
        return cls(
            id=str(data["id"]),
            source_table=table,
            email=_as_str(data.get("email")),
            name=_as_str(data.get("name")),
            phone_number=_as_str(data.get("phone_number")),
            bankid_verified=_as_bool(data.get("bankid_verified")),
            last_login_at=_as_str(data.get("last_login_at")),
            created_at=_as_str(data.get("created_at")),
            updated_at=_as_str(data.get("updated_at")),
            deleted_at=_as_str(data.get("deleted_at")),
            stripe_customer_id=_as_str(data.get("stripe_customer_id")),
            sms_enabled=_as_bool(data.get("sms_enabled", True)),
            email_enabled=_as_bool(data.get("email_enabled", True)),
            bio=_as_str(data.get("bio")),
            can_travel=_as_bool(data.get("can_travel")),
            has_own_place=_as_bool(data.get("has_own_place")),
            travel_distance=_as_float(data.get("travel_distance")),
            instagram_profile=_as_str(data.get("instagram_profile")),
            facebook_profile=_as_str(data.get("facebook_profile")),
            twitter_profile=_as_str(data.get("twitter_profile")),
            stripe_account_id=_as_str(data.get("stripe_account_id")),
        )


@dataclass(frozen=True)
class StylistDetails:
    """Business profile block carried by stylist identities."""
    bio: Optional[str] = None
    can_travel: bool = False
    has_own_place: bool = False
    travel_distance_km: Optional[float] = None
    instagram_profile: Optional[str] = None
    facebook_profile: Optional[str] = None
    tiktok_profile: Optional[str] = None
    youtube_profile: Optional[str] = None
    snapchat_profile: Optional[str] = None
    other_social_media_urls: List[str] = field(default_factory=list)
    stripe_account_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bio": self.bio,
            "can_travel": self.can_travel,
            "has_own_place": self.has_own_place,
            "travel_distance_km": self.travel_distance_km,
            "instagram_profile": self.instagram_profile,
            "facebook_profile": self.facebook_profile,
            "tiktok_profile": self.tiktok_profile,
            "youtube_profile": self.youtube_profile,
            "snapchat_profile": self.snapchat_profile,
            "other_social_media_urls": list(self.other_social_media_urls),
            "stripe_account_id": self.stripe_account_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StylistDetails":
        return cls(
            bio=data.get("bio"),
            can_travel=bool(data.get("can_travel", False)),
            has_own_place=bool(data.get("has_own_place", False)),
            travel_distance_km=data.get("travel_distance_km"),
            instagram_profile=data.get("instagram_profile"),
            facebook_profile=data.get("facebook_profile"),
            tiktok_profile=data.get("tiktok_profile"),
            youtube_profile=data.get("youtube_profile"),
            snapchat_profile=data.get("snapchat_profile"),
            other_social_media_urls=list(data.get("other_social_media_urls") or []),
            stripe_account_id=data.get("stripe_account_id"),
        )


@dataclass(frozen=True)
class UserPreferences:
    """Per-category notification flags."""
    newsletter_subscribed: bool = True
    marketing_emails: bool = True
    promotional_sms: bool = True
    booking_confirmations: bool = True
    booking_reminders: bool = True
    booking_cancellations: bool = True
    booking_status_updates: bool = True
    chat_messages: bool = True
    new_booking_requests: bool = False
    review_notifications: bool = False
    payment_notifications: bool = False
    application_status_updates: bool = False
    email_delivery: bool = True
    sms_delivery: bool = True
    push_notifications: bool = True

    @classmethod
    def for_role(cls, role: Role, email_enabled: bool, sms_enabled: bool) -> "UserPreferences":
        """Build defaults from the legacy email/sms opt-ins.

        Business notifications are only switched on for stylists.
        """
        is_stylist = role is Role.STYLIST
        return cls(
            marketing_emails=email_enabled,
            promotional_sms=sms_enabled,
            new_booking_requests=is_stylist,
            review_notifications=is_stylist,
            payment_notifications=is_stylist,
            application_status_updates=is_stylist,
            email_delivery=email_enabled,
            sms_delivery=sms_enabled,
        )

    def to_dict(self) -> Dict[str, bool]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserPreferences":
        known = {k: bool(v) for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class ConsolidatedIdentity:
    """The canonical identity written to the target store."""
    id: str
    email: str
    role: Role
    source_table: SourceTable
    original_id: str
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    bankid_verified: bool = False
    stripe_customer_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    stylist_details: Optional[StylistDetails] = None
    preferences: UserPreferences = field(default_factory=UserPreferences)

    @property
    def normalized_email(self) -> str:
        return self.email.strip().lower()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "phone_number": self.phone_number,
            "role": self.role.value,
            "bankid_verified": self.bankid_verified,
            "stripe_customer_id": self.stripe_customer_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "stylist_details": self.stylist_details.to_dict() if self.stylist_details else None,
            "user_preferences": self.preferences.to_dict(),
            "source_table": self.source_table.value,
            "original_id": self.original_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsolidatedIdentity":
        """Create from dictionary representation."""
        details = data.get("stylist_details")
        return cls(
            id=str(data["id"]),
            email=data["email"],
            role=Role(data["role"]),
            source_table=SourceTable(data["source_table"]),
            original_id=str(data.get("original_id", data["id"])),
            full_name=data.get("full_name"),
            phone_number=data.get("phone_number"),
            bankid_verified=bool(data.get("bankid_verified", False)),
            stripe_customer_id=data.get("stripe_customer_id"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            stylist_details=StylistDetails.from_dict(details) if details else None,
            preferences=UserPreferences.from_dict(data.get("user_preferences") or {}),
        )


@dataclass(frozen=True)
class DuplicateConflict:
    """An email present in both the buyer and the stylist collections."""
    email: str
    resolution: ResolutionStrategy
    reason: str
    buyer_record: Optional[SourceIdentity] = None
    stylist_record: Optional[SourceIdentity] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "buyer_record": self.buyer_record.to_dict() if self.buyer_record else None,
            "stylist_record": self.stylist_record.to_dict() if self.stylist_record else None,
            "resolution": self.resolution.value,
            "reason": self.reason,
        }


@dataclass
class ValidationError:
    """A validation error on a source or consolidated record."""
    record_id: str
    table: str
    field: str
    message: str
    value: Optional[Any] = None
    severity: str = "error"  # error, warning

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "record_id": self.record_id,
            "table": self.table,
            "field": self.field,
            "value": self.value,
            "error": self.message,
            "severity": self.severity,
        }
