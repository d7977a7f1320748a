"""
Order pricing - pure computation, no database access.

Turns the submitted items, a business-settings snapshot and an optional
discount rule into a PricingBreakdown. The breakdown is stored on the Order
verbatim and never recomputed, so later changes to tax or delivery settings
do not alter historical prices.

    unit price   = base price + sum(modifier prices)
    subtotal     = sum(unit price * quantity)
    tax          = round2(subtotal * gst% / 100)            if GST applies
    delivery fee = fixed charge                             if applied to all orders
                   fixed charge if subtotal < threshold     otherwise
    discount     = min(requested, cap, subtotal)
    total        = max(0, subtotal + tax + delivery fee - discount)
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple

from core.exceptions import ValidationError

ZERO = Decimal('0.00')
MONEY = Decimal('0.01')
HUNDRED = Decimal('100')

MODIFIER_KINDS = ('customization', 'add-on', 'topping')


def round2(value) -> Decimal:
    return Decimal(value).quantize(MONEY, rounding=ROUND_HALF_UP)


def to_decimal(value, default: Decimal = ZERO, field_name: str = 'value') -> Decimal:
    """Coerce user input to Decimal; None and '' give the default."""
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return result


@dataclass(frozen=True)
class Modifier:
    name: str
    price: Decimal = ZERO
    kind: str = 'add-on'

    @classmethod
    def from_input(cls, raw, kind: str = 'add-on') -> 'Modifier':
        if isinstance(raw, str):
            return cls(name=raw, price=ZERO, kind=kind)
        if not isinstance(raw, dict):
            raise ValidationError(f"Each {kind} modifier must be an object or a name")
        price = to_decimal(raw.get('price'), field_name='modifier price')
        # Negative modifier prices are treated as free.
        if price < 0:
            price = ZERO
        return cls(
            name=str(raw.get('name') or raw.get('option') or 'Unknown'),
            price=round2(price),
            kind=raw.get('kind') or kind,
        )

    def as_dict(self) -> dict:
        return {'name': self.name, 'kind': self.kind, 'price': str(self.price)}


@dataclass(frozen=True)
class ItemInput:
    name: str
    quantity: int
    base_price: Decimal
    modifiers: Tuple[Modifier, ...] = ()
    menu_item_id: str = ''
    special_instructions: str = ''

    @property
    def unit_price(self) -> Decimal:
        return self.base_price + sum((m.price for m in self.modifiers), ZERO)

    @property
    def line_total(self) -> Decimal:
        return round2(self.unit_price * self.quantity)


@dataclass(frozen=True)
class SettingsSnapshot:
    """Tax/delivery/minimum-order configuration frozen at order creation."""
    gst_percentage: Optional[Decimal] = None
    apply_gst: bool = True
    delivery_fixed_charge: Decimal = ZERO
    free_delivery_threshold: Decimal = ZERO
    apply_to_all_orders: bool = False
    minimum_order_value: Decimal = ZERO

    def as_dict(self) -> dict:
        return {
            'gst_percentage': None if self.gst_percentage is None else str(self.gst_percentage),
            'apply_gst': self.apply_gst,
            'delivery_fixed_charge': str(self.delivery_fixed_charge),
            'free_delivery_threshold': str(self.free_delivery_threshold),
            'apply_to_all_orders': self.apply_to_all_orders,
            'minimum_order_value': str(self.minimum_order_value),
        }


@dataclass(frozen=True)
class DiscountRule:
    """An evaluated discount code: fixed amount or percentage of subtotal."""
    PERCENTAGE = 'percentage'
    FIXED = 'fixed'

    kind: str
    value: Decimal
    max_amount: Optional[Decimal] = None
    min_order_value: Decimal = ZERO
    code: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Discount:
    amount: Decimal = ZERO
    percentage: Optional[Decimal] = None
    code: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class PricingBreakdown:
    items: Tuple[ItemInput, ...]
    subtotal: Decimal
    tax: Decimal
    tax_percentage: Decimal
    delivery_fee: Decimal
    discount: Discount = field(default_factory=Discount)
    total: Decimal = ZERO

    def as_dict(self) -> dict:
        return {
            'subtotal': str(self.subtotal),
            'tax': str(self.tax),
            'tax_percentage': str(self.tax_percentage),
            'delivery_fee': str(self.delivery_fee),
            'discount': {
                'amount': str(self.discount.amount),
                'percentage': None if self.discount.percentage is None else str(self.discount.percentage),
                'code': self.discount.code,
                'description': self.discount.description,
            },
            'total': str(self.total),
        }


def normalize_discount(value) -> Discount:
    """
    Normalize the legacy discount shapes into a Discount.

    Accepts None, a bare number (amount) or a dict with
    amount/percentage/code/description keys.
    """
    if value is None or value == '':
        return Discount()
    if isinstance(value, dict):
        amount = to_decimal(value.get('amount'), field_name='discount amount')
        percentage = value.get('percentage')
        code = str(value.get('code') or '').strip()
        return Discount(
            amount=round2(max(amount, ZERO)),
            percentage=None if percentage in (None, '') else to_decimal(percentage, field_name='discount percentage'),
            code=code or None,
            description=value.get('description') or None,
        )
    amount = to_decimal(value, field_name='discount')
    return Discount(amount=round2(max(amount, ZERO)))


def build_items(raw_items: Iterable[dict]) -> List[ItemInput]:
    """
    Build ItemInputs from request payloads.

    Modifiers may arrive as a single `modifiers` list or split into the
    `customizations`, `add_ons` and `toppings` lists the apps send.
    """
    items = []
    for idx, raw in enumerate(raw_items or []):
        name = (raw.get('name') or '').strip()
        if not name:
            raise ValidationError(f"Item {idx}: missing 'name'")

        quantity = raw.get('quantity')
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError(f"Item {idx}: quantity must be a positive integer")

        base_price = to_decimal(
            raw.get('base_price', raw.get('price')),
            default=None,
            field_name=f"Item {idx} base price"
        )
        if base_price is None:
            raise ValidationError(f"Item {idx}: missing 'base_price'")
        if base_price < 0:
            raise ValidationError(f"Item {idx}: base price cannot be negative")

        modifiers = [Modifier.from_input(m) for m in raw.get('modifiers') or []]
        for kind, key in zip(MODIFIER_KINDS, ('customizations', 'add_ons', 'toppings')):
            modifiers.extend(Modifier.from_input(m, kind=kind) for m in raw.get(key) or [])

        items.append(ItemInput(
            name=name,
            quantity=quantity,
            base_price=round2(base_price),
            modifiers=tuple(modifiers),
            menu_item_id=str(raw.get('menu_item_id') or ''),
            special_instructions=raw.get('special_instructions') or '',
        ))
    return items


def compute_tax(subtotal: Decimal, snapshot: SettingsSnapshot, default_percentage: Decimal) -> Tuple[Decimal, Decimal]:
    """Return (tax, percentage applied)."""
    if not snapshot.apply_gst:
        return ZERO, ZERO
    percentage = snapshot.gst_percentage
    if percentage is None:
        percentage = default_percentage
    return round2(subtotal * percentage / HUNDRED), percentage


def compute_delivery_fee(subtotal: Decimal, snapshot: SettingsSnapshot) -> Decimal:
    if snapshot.apply_to_all_orders:
        return round2(snapshot.delivery_fixed_charge)
    if subtotal < snapshot.free_delivery_threshold:
        return round2(snapshot.delivery_fixed_charge)
    return ZERO


def compute_discount(subtotal: Decimal, rule: Optional[DiscountRule]) -> Discount:
    if rule is None:
        return Discount()

    if subtotal < rule.min_order_value:
        label = f" {rule.code}" if rule.code else ''
        raise ValidationError(
            f"Discount code{label} requires a minimum order of {rule.min_order_value}"
        )

    if rule.kind == DiscountRule.PERCENTAGE:
        requested = subtotal * rule.value / HUNDRED
        percentage = rule.value
    else:
        requested = rule.value
        percentage = None

    amount = max(requested, ZERO)
    if rule.max_amount is not None:
        amount = min(amount, rule.max_amount)
    amount = min(amount, subtotal)

    return Discount(
        amount=round2(amount),
        percentage=percentage,
        code=rule.code,
        description=rule.description,
    )


def price_order(
    items: List[ItemInput],
    snapshot: SettingsSnapshot,
    discount_rule: Optional[DiscountRule] = None,
    enforce_minimum: bool = True,
    default_gst_percentage: Decimal = Decimal('5'),
) -> PricingBreakdown:
    """
    Compute the full pricing breakdown for an order.

    Raises:
        ValidationError: empty item list, subtotal below the minimum order
            value (when enforced) or discount minimum not met
    """
    if not items:
        raise ValidationError("Order must contain at least one item")

    subtotal = round2(sum((item.line_total for item in items), ZERO))

    if enforce_minimum and subtotal < snapshot.minimum_order_value:
        raise ValidationError(
            f"Minimum order value is {snapshot.minimum_order_value}; order subtotal is {subtotal}"
        )

    tax, tax_percentage = compute_tax(subtotal, snapshot, Decimal(str(default_gst_percentage)))
    delivery_fee = compute_delivery_fee(subtotal, snapshot)
    discount = compute_discount(subtotal, discount_rule)
    total = max(ZERO, subtotal + tax + delivery_fee - discount.amount)

    return PricingBreakdown(
        items=tuple(items),
        subtotal=subtotal,
        tax=tax,
        tax_percentage=tax_percentage,
        delivery_fee=delivery_fee,
        discount=discount,
        total=round2(total),
    )
