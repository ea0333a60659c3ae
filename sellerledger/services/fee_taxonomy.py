from types import MappingProxyType
from typing import Dict, Mapping, NamedTuple, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sellerledger.models.ledger import FeeCategoryMapping
from sellerledger.utils.logger import get_loggers
logger = get_loggers("FeeTaxonomy")

OTHER = 'other'

CATEGORY_DISPLAY_NAMES = MappingProxyType({
    'referral': 'Referral Fees',
    'fba_fulfillment': 'FBA Fulfillment Fees',
    'storage': 'Storage Fees',
    'advertising': 'Advertising',
    'shipping': 'Shipping',
    'removal': 'Removal & Disposal',
    'service': 'Service Fees',
    'other': 'Other Fees',
})


class FeeCategory(NamedTuple):
    category: str
    display_name: str


# (fee_type, category, display_name, description)
DEFAULT_FEE_CATEGORIES = (
    ('Commission', 'referral', 'Referral Fee', 'Amazon referral fee on each sale'),
    ('RefundCommission', 'referral', 'Refund Commission', 'Referral fee retained on refunds'),
    ('FBAPerUnitFulfillmentFee', 'fba_fulfillment', 'FBA Fulfillment Fee', 'Per unit FBA pick, pack and ship fee'),
    ('FBAWeightBasedFee', 'fba_fulfillment', 'FBA Weight Based Fee', 'FBA fee based on item weight'),
    ('FBAPerOrderFulfillmentFee', 'fba_fulfillment', 'FBA Per Order Fee', 'FBA fee charged per order'),
    ('StorageFee', 'storage', 'Monthly Storage Fee', 'FBA monthly inventory storage'),
    ('LongTermStorageFee', 'storage', 'Long Term Storage Fee', 'FBA aged inventory surcharge'),
    ('StorageRenewalBilling', 'storage', 'Storage Renewal Billing', 'FBA storage renewal'),
    ('RemovalFee', 'removal', 'Removal Fee', 'FBA inventory removal order'),
    ('DisposalFee', 'removal', 'Disposal Fee', 'FBA inventory disposal order'),
    ('ShippingChargeback', 'shipping', 'Shipping Chargeback', 'Shipping cost charged back to the seller'),
    ('ShippingHoldback', 'shipping', 'Shipping Holdback', 'Shipping amount withheld'),
    ('SubscriptionFee', 'service', 'Subscription Fee', 'Professional seller subscription'),
    ('ServiceFee', 'service', 'Service Fee', 'Account level service fee'),
    ('DigitalServicesFee', 'service', 'Digital Services Fee', 'Digital services tax surcharge'),
    ('AdvertisingFee', 'advertising', 'Advertising Fee', 'Sponsored products spend'),
    ('CostPerClick', 'advertising', 'Cost Per Click', 'Sponsored ads click charge'),
    ('VariableClosingFee', 'other', 'Variable Closing Fee', 'Media closing fee'),
    ('GiftWrapChargeback', 'other', 'Gift Wrap Chargeback', 'Gift wrap credit charged back'),
    ('RestockingFee', 'other', 'Restocking Fee', 'Restocking fee on returns'),
    ('ReverseShipmentFee', 'other', 'Reverse Shipment Fee', 'Return shipping charged to the seller'),
)


class FeeTaxonomy:
    """Immutable fee type -> category lookup.

    Built once per sync run and handed to the normalizer. Never refreshed
    mid-run; build a new instance to pick up mapping changes.
    """

    def __init__(self, mappings: Mapping[str, FeeCategory]):
        self._mappings = MappingProxyType(dict(mappings))

    @classmethod
    def default(cls) -> 'FeeTaxonomy':
        return cls({fee_type: FeeCategory(category, display_name)
                    for fee_type, category, display_name, _ in DEFAULT_FEE_CATEGORIES})

    @classmethod
    async def load(cls, db: AsyncSession) -> 'FeeTaxonomy':
        result = await db.execute(select(FeeCategoryMapping))
        rows = result.scalars().all()
        if not rows:
            logger.warning(
                "No fee category mappings stored, using built-in defaults")
            return cls.default()
        logger.info(f"Loaded {len(rows)} fee category mappings")
        return cls({row.fee_type: FeeCategory(row.category, row.display_name) for row in rows})

    @property
    def mappings(self) -> Mapping[str, FeeCategory]:
        return self._mappings

    def categorize(self, fee_type: Optional[str]) -> FeeCategory:
        if not fee_type:
            return FeeCategory(OTHER, 'Other Fee')
        found = self._mappings.get(fee_type)
        if found is None:
            return FeeCategory(OTHER, fee_type)
        return found

    def __len__(self) -> int:
        return len(self._mappings)


def category_display_name(category: Optional[str]) -> str:
    if not category:
        return CATEGORY_DISPLAY_NAMES[OTHER]
    return CATEGORY_DISPLAY_NAMES.get(category, category)


async def seed_fee_categories(db: AsyncSession) -> Dict[str, int]:
    """Insert missing default mappings. Existing rows are left as they are."""
    result = await db.execute(select(FeeCategoryMapping.fee_type))
    existing = {row[0] for row in result}
    created = 0
    for fee_type, category, display_name, description in DEFAULT_FEE_CATEGORIES:
        if fee_type in existing:
            continue
        db.add(FeeCategoryMapping(fee_type=fee_type, category=category,
               display_name=display_name, description=description))
        created += 1
    await db.commit()
    logger.info(
        f"Seeded {created} fee category mappings ({len(existing)} already present)")
    return {'created': created, 'existing': len(existing)}
