"""
Escrow handling for marketplace purchases.

Funds for a purchase are held until the buyer confirms receipt, the hold
period lapses (auto-release), or a dispute is resolved. Every funds_status
change goes through ``transition_funds`` so the allowed moves live in one
place.
"""
import logging
import random
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from bikemarket.core.utils import create_audit_log
from .models import Purchase

logger = logging.getLogger(__name__)

# funds_status -> statuses it may move to
FUNDS_TRANSITIONS = {
    'held': {'released', 'auto_released', 'disputed', 'refunded'},
    'disputed': {'released', 'refunded'},
    'released': set(),
    'auto_released': set(),
    'refunded': set(),
}

FUNDS_AUDIT_ACTIONS = {
    'released': 'funds_release',
    'auto_released': 'funds_auto_release',
    'disputed': 'funds_dispute',
    'refunded': 'funds_refund',
}

CENTS = Decimal('0.01')


class EscrowError(Exception):
    """Raised when a purchase cannot make the requested escrow transition"""


def to_money(value):
    return Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


def platform_fee_for(item_price):
    """Platform commission taken from the item price (seller pays)"""
    percentage = Decimal(str(getattr(settings, 'PLATFORM_FEE_PERCENTAGE', 0.03)))
    return (to_money(item_price) * percentage).quantize(CENTS, rounding=ROUND_HALF_UP)


def generate_order_number():
    """ORD-YYYYMMDD-NNNNN, retried until unused"""
    date_part = timezone.now().strftime('%Y%m%d')
    while True:
        order_number = f"ORD-{date_part}-{random.randint(0, 99999):05d}"
        if not Purchase.objects.filter(order_number=order_number).exists():
            return order_number


def can_transition(current, target):
    return target in FUNDS_TRANSITIONS.get(current, set())


def create_purchase(buyer, seller, product, item_price, shipping_cost=0, tax_amount=0, shipping_address=None, **details):
    """Open a purchase with funds held for the configured hold period"""
    item_price = to_money(item_price)
    shipping_cost = to_money(shipping_cost)
    tax_amount = to_money(tax_amount)
    if item_price <= 0:
        raise EscrowError('Item price must be greater than zero')
    if shipping_cost < 0 or tax_amount < 0:
        raise EscrowError('Shipping cost and tax cannot be negative')

    total_amount = item_price + shipping_cost + tax_amount
    platform_fee = platform_fee_for(item_price)
    hold_days = getattr(settings, 'FUNDS_HOLD_DAYS', 7)

    purchase = Purchase.objects.create(
        order_number=generate_order_number(),
        buyer=buyer,
        seller=seller,
        product=product,
        item_price=item_price,
        shipping_cost=shipping_cost,
        tax_amount=tax_amount,
        total_amount=total_amount,
        platform_fee=platform_fee,
        seller_payout_amount=total_amount - platform_fee,
        status='pending',
        payment_status='pending',
        funds_status='held',
        funds_release_at=timezone.now() + timedelta(days=hold_days),
        shipping_address=shipping_address or {},
        **details,
    )
    logger.info(f"Purchase {purchase.order_number} created: buyer={buyer.id} seller={seller.id} total={total_amount}")
    return purchase


def transition_funds(purchase, target, request=None, user=None, **extra_fields):
    """
    Move a purchase's funds_status to ``target`` under a row lock.

    Raises EscrowError for transitions not in FUNDS_TRANSITIONS. Extra
    keyword arguments are set on the purchase in the same save.
    """
    with transaction.atomic():
        locked = Purchase.objects.select_for_update().get(pk=purchase.pk)
        current = locked.funds_status
        if not can_transition(current, target):
            raise EscrowError(f'Cannot change funds from "{current}" to "{target}"')

        locked.funds_status = target
        for name, value in extra_fields.items():
            setattr(locked, name, value)
        locked.save()

    create_audit_log(
        request=request,
        user=user,
        action=FUNDS_AUDIT_ACTIONS[target],
        model_name='Purchase',
        object_id=locked.id,
        object_reference=locked.order_number,
        changes={'funds_status': {'old': current, 'new': target}},
    )
    logger.info(f"Purchase {locked.order_number} funds {current} -> {target}")
    return locked


def confirm_receipt(purchase, request=None):
    """Buyer confirms the item arrived: mark delivered and release funds"""
    if purchase.funds_status != 'held':
        raise EscrowError(f'Funds cannot be released - current status is "{purchase.funds_status}"')
    now = timezone.now()
    return transition_funds(
        purchase, 'released', request=request,
        buyer_confirmed_at=now,
        delivered_at=purchase.delivered_at or now,
        status='delivered',
    )


def open_dispute(purchase, reason, request=None):
    if not reason:
        raise EscrowError('A reason is required to open a dispute')
    return transition_funds(
        purchase, 'disputed', request=request,
        disputed_at=timezone.now(),
        dispute_reason=reason,
    )


def resolve_dispute(purchase, resolution, request=None):
    """Staff resolution of a dispute: release to seller or refund the buyer"""
    if purchase.funds_status != 'disputed':
        raise EscrowError('Purchase is not disputed')
    if resolution == 'release':
        return transition_funds(purchase, 'released', request=request, status='delivered')
    if resolution == 'refund':
        return transition_funds(purchase, 'refunded', request=request,
                                status='refunded', payment_status='refunded')
    raise EscrowError('Resolution must be "release" or "refund"')


def cancel_purchase(purchase, request=None):
    """Cancel an order that has not shipped; held funds go back to the buyer"""
    if purchase.status not in ('pending', 'confirmed', 'paid'):
        raise EscrowError(f'Cannot cancel a purchase with status "{purchase.status}"')
    payment_status = 'refunded' if purchase.payment_status == 'paid' else purchase.payment_status
    return transition_funds(purchase, 'refunded', request=request,
                            status='cancelled', payment_status=payment_status)


def mark_shipped(purchase, tracking_number=None, request=None):
    if purchase.status not in ('pending', 'confirmed', 'paid'):
        raise EscrowError(f'Cannot ship a purchase with status "{purchase.status}"')
    purchase.status = 'shipped'
    purchase.shipped_at = timezone.now()
    if tracking_number:
        purchase.tracking_number = tracking_number
    purchase.save(update_fields=['status', 'shipped_at', 'tracking_number', 'updated_at'])
    create_audit_log(
        request=request,
        action='purchase_ship',
        model_name='Purchase',
        object_id=purchase.id,
        object_reference=purchase.order_number,
        changes={'tracking_number': tracking_number},
    )
    return purchase


def release_due_funds(now=None):
    """
    Auto-release every held purchase whose hold period has lapsed and pay the seller.

    Each row is claimed with a conditional update on funds_status='held', so
    a purchase confirmed or disputed concurrently is skipped. Returns a dict
    of released/failed counts and error messages.
    """
    from .payouts import trigger_seller_payout

    now = now or timezone.now()
    due = list(Purchase.objects.filter(funds_status='held', funds_release_at__lte=now).order_by('funds_release_at'))
    result = {'released': 0, 'failed': 0, 'errors': [], 'due': len(due)}

    for purchase in due:
        claimed = Purchase.objects.filter(pk=purchase.pk, funds_status='held').update(
            funds_status='auto_released', updated_at=now,
        )
        if not claimed:
            logger.info(f"Purchase {purchase.order_number} changed before auto-release, skipping")
            continue

        purchase.refresh_from_db()
        create_audit_log(
            action='funds_auto_release',
            model_name='Purchase',
            object_id=purchase.id,
            object_reference=purchase.order_number,
            changes={'funds_status': {'old': 'held', 'new': 'auto_released'}},
        )
        # A seller without a payout account is recorded as a failed payout but the
        # funds still count as released; only transfer errors count as failures.
        try:
            trigger_seller_payout(purchase)
        except Exception as e:
            logger.error(f"Payout failed for {purchase.order_number}: {str(e)}", exc_info=True)
            result['failed'] += 1
            result['errors'].append(f"{purchase.order_number}: {str(e)}")
            continue
        result['released'] += 1

    logger.info(f"Auto-release complete: {result['released']} released, {result['failed']} failed")
    return result
