"""
Customer Resolver
Finds or creates the internal customer behind a marketplace buyer identity

Resolution order:
    1. (platform, external customer id) mapping
    2. case-insensitive email match, then a mapping is recorded
    3. new customer, then a mapping is recorded

Calls for the same (platform, external id) are serialized so two overlapping
syncs can never create two customers for one buyer.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopsync.config import Settings
from shopsync.connectors.base_connector import CustomerCandidate
from shopsync.models.customer import Customer, ExternalCustomerMapping
from shopsync.models.enums import CustomerSource, CustomerStatus, CustomerTier, SalesChannel
from shopsync.utils.cache import ExpiringCache
from shopsync.utils.keyed_lock import KeyedLock
from shopsync.utils.logger import log

SOURCE_BY_PLATFORM = {
    SalesChannel.SHOPIFY.value: CustomerSource.SHOPIFY,
    SalesChannel.ETSY.value: CustomerSource.ETSY,
    SalesChannel.AMAZON.value: CustomerSource.MARKETPLACE,
    SalesChannel.EBAY.value: CustomerSource.MARKETPLACE,
}


@dataclass(frozen=True)
class CustomerRecord:
    """Detached, immutable view of a customer (safe to cache across sessions)"""
    id: int
    name: str
    email: Optional[str]
    phone: Optional[str]
    status: str
    tier: str
    source: str

    @classmethod
    def from_model(cls, customer: Customer) -> "CustomerRecord":
        return cls(
            id=customer.id,
            name=customer.name,
            email=customer.email,
            phone=customer.phone,
            status=customer.status,
            tier=customer.tier,
            source=customer.source,
        )


@dataclass
class CustomerCaches:
    """The three lookup caches, shared by every resolver in the process"""
    mappings: ExpiringCache  # platform -> {external_id: customer_id}
    details: ExpiringCache   # customer_id -> CustomerRecord
    emails: ExpiringCache    # lowercased email -> customer_id

    @classmethod
    def from_settings(cls, settings: Settings) -> "CustomerCaches":
        return cls(
            mappings=ExpiringCache(settings.customer_mapping_cache_ttl, name="customer_mappings"),
            details=ExpiringCache(settings.customer_detail_cache_ttl, name="customer_details"),
            emails=ExpiringCache(settings.customer_email_cache_ttl, name="customer_emails"),
        )

    def all(self) -> List[ExpiringCache]:
        return [self.mappings, self.details, self.emails]

    def clear(self):
        for cache in self.all():
            cache.clear()


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    email = email.strip().lower()
    return email or None


class CustomerResolver:
    """Service for matching marketplace buyers to customers"""

    def __init__(self, db: Session, caches: CustomerCaches, locks: KeyedLock):
        self.db = db
        self.caches = caches
        self.locks = locks

    async def find_or_create(
        self,
        platform: str,
        external_customer_id: Optional[str],
        candidate: CustomerCandidate,
    ) -> CustomerRecord:
        """
        Return the customer for this buyer, creating one if nobody matches.

        Idempotent for a fixed (platform, external_customer_id).
        """
        external_id = str(external_customer_id) if external_customer_id else None
        email = normalize_email(candidate.email)

        if external_id:
            lock_key = (platform, external_id)
        elif email:
            lock_key = (platform, f"email:{email}")
        else:
            log.warning(f"{platform}: buyer has neither an id nor an email, creating an unmatched customer")
            return self._create_customer(platform, candidate, email)

        async with self.locks.hold(lock_key):
            return self._resolve(platform, external_id, email, candidate)

    def _resolve(
        self,
        platform: str,
        external_id: Optional[str],
        email: Optional[str],
        candidate: CustomerCandidate,
    ) -> CustomerRecord:
        # 1. External identity mapping
        if external_id:
            customer_id = self._lookup_mapping(platform, external_id)
            if customer_id is not None:
                record = self.get_customer(customer_id)
                if record is not None:
                    return record
                log.warning(
                    f"Mapping {platform}:{external_id} points at missing customer {customer_id}, discarding it"
                )
                self._discard_mapping(platform, external_id)

        # 2. Email match
        if email:
            record = self._lookup_email(email)
            if record is not None:
                if external_id:
                    return self._create_mapping(platform, external_id, record, email)
                return record

        # 3. New customer
        record = self._create_customer(platform, candidate, email)
        if external_id:
            return self._create_mapping(platform, external_id, record, email)
        return record

    # ── Lookups ─────────────────────────────────────────

    def get_customer(self, customer_id: int) -> Optional[CustomerRecord]:
        """Customer by id through the detail cache"""
        record, found = self.caches.details.lookup(customer_id)
        if found:
            return record

        customer = self.db.query(Customer).filter(Customer.id == customer_id).first()
        if customer is None:
            return None
        record = CustomerRecord.from_model(customer)
        self.caches.details.set(customer_id, record)
        return record

    def _lookup_mapping(self, platform: str, external_id: str) -> Optional[int]:
        platform_map = self.caches.mappings.get(platform)
        if platform_map and external_id in platform_map:
            return platform_map[external_id]

        mapping = self.db.query(ExternalCustomerMapping).filter(
            ExternalCustomerMapping.platform == platform,
            ExternalCustomerMapping.external_id == external_id,
        ).first()
        if mapping is None:
            return None
        self._remember_mapping(platform, external_id, mapping.customer_id)
        return mapping.customer_id

    def _lookup_email(self, email: str) -> Optional[CustomerRecord]:
        customer_id = self.caches.emails.get(email)
        if customer_id is not None:
            record = self.get_customer(customer_id)
            if record is not None:
                return record
            self.caches.emails.delete(email)

        matches = self.db.query(Customer).filter(
            func.lower(Customer.email) == email
        ).order_by(Customer.id).all()
        if not matches:
            return None
        if len(matches) > 1:
            log.warning(
                f"Email {email} matches {len(matches)} customers "
                f"({', '.join(str(c.id) for c in matches)}); using the oldest, {matches[0].id}"
            )

        record = CustomerRecord.from_model(matches[0])
        self.caches.emails.set(email, record.id)
        self.caches.details.set(record.id, record)
        return record

    # ── Writes ──────────────────────────────────────────

    def _create_customer(
        self, platform: str, candidate: CustomerCandidate, email: Optional[str]
    ) -> CustomerRecord:
        customer = Customer(
            name=candidate.name or email or "Unknown customer",
            email=email,
            phone=candidate.phone or None,
            status=CustomerStatus.ACTIVE.value,
            tier=CustomerTier.STANDARD.value,
            source=SOURCE_BY_PLATFORM.get(platform, CustomerSource.OTHER).value,
        )
        self.db.add(customer)
        self.db.commit()

        record = CustomerRecord.from_model(customer)
        self.caches.details.set(record.id, record)
        if email:
            self.caches.emails.set(email, record.id)
        log.info(f"Created customer {record.id} from {platform}" + (f" ({email})" if email else ""))
        return record

    def _create_mapping(
        self, platform: str, external_id: str, record: CustomerRecord, email: Optional[str]
    ) -> CustomerRecord:
        mapping = ExternalCustomerMapping(
            platform=platform,
            external_id=external_id,
            customer_id=record.id,
            email=email,
        )
        self.db.add(mapping)
        try:
            self.db.commit()
        except IntegrityError:
            # Another process recorded this identity first: its mapping wins
            self.db.rollback()
            existing = self.db.query(ExternalCustomerMapping).filter(
                ExternalCustomerMapping.platform == platform,
                ExternalCustomerMapping.external_id == external_id,
            ).one()
            self._remember_mapping(platform, external_id, existing.customer_id)
            return self.get_customer(existing.customer_id) or record

        self._remember_mapping(platform, external_id, record.id)
        log.info(f"Mapped {platform}:{external_id} to customer {record.id}")
        return record

    def _discard_mapping(self, platform: str, external_id: str):
        self.db.query(ExternalCustomerMapping).filter(
            ExternalCustomerMapping.platform == platform,
            ExternalCustomerMapping.external_id == external_id,
        ).delete(synchronize_session=False)
        self.db.commit()
        platform_map = self.caches.mappings.get(platform)
        if platform_map and external_id in platform_map:
            updated = dict(platform_map)
            del updated[external_id]
            self.caches.mappings.set(platform, updated)

    def _remember_mapping(self, platform: str, external_id: str, customer_id: int):
        # Cached maps are replaced, never mutated, so readers always see a consistent dict
        platform_map: Dict[str, int] = dict(self.caches.mappings.get(platform) or {})
        platform_map[external_id] = customer_id
        self.caches.mappings.set(platform, platform_map)
