"""
Seller payouts via Stripe Connect transfers.

The platform collects the buyer's payment; once escrow releases the funds
the seller's share is transferred to their connected Stripe account.
"""
import logging

import stripe
from django.conf import settings
from django.utils import timezone

from bikemarket.core.utils import create_audit_log
from .escrow import platform_fee_for, to_money
from .models import Purchase, SellerPayout

logger = logging.getLogger(__name__)

RELEASED_FUNDS_STATUSES = ('released', 'auto_released')


class PayoutError(Exception):
    """Raised when a transfer to the seller cannot be made"""


def get_stripe_api_key():
    return getattr(settings, 'STRIPE_SECRET_KEY', '')


def describe_stripe_error(error):
    """User-safe message for a Stripe error, logged with its type"""
    logger.error(f"Stripe error: {type(error).__name__}: {error}")
    if isinstance(error, stripe.RateLimitError):
        return "Payment service is rate limited. Please try again shortly."
    if isinstance(error, stripe.InvalidRequestError):
        return f"Invalid transfer request: {getattr(error, 'user_message', None) or str(error)}"
    if isinstance(error, stripe.AuthenticationError):
        logger.critical(f"Stripe authentication failed: {error}")
        return "Payment service configuration error."
    if isinstance(error, stripe.APIConnectionError):
        return "Payment service temporarily unavailable."
    return getattr(error, 'user_message', None) or str(error) or "Unknown Stripe error"


def _record_payout(purchase, status, stripe_account_id='', failure_reason=None, transfer_id=None):
    platform_fee = purchase.platform_fee or platform_fee_for(purchase.item_price)
    net_amount = purchase.seller_payout_amount or (to_money(purchase.total_amount) - platform_fee)
    return SellerPayout.objects.create(
        purchase=purchase,
        seller_id=purchase.seller_id,
        stripe_account_id=stripe_account_id or '',
        stripe_transfer_id=transfer_id,
        gross_amount=purchase.total_amount,
        platform_fee=platform_fee,
        net_amount=net_amount,
        currency=getattr(settings, 'PAYOUT_CURRENCY', 'aud'),
        status=status,
        failure_reason=failure_reason,
        completed_at=timezone.now() if status == 'completed' else None,
    )


def trigger_seller_payout(purchase):
    """
    Transfer the seller's share of a released purchase.

    Returns a dict: ``{'success': True, 'transfer_id': ...}`` on transfer,
    ``{'success': True, 'skipped': True}`` when already paid out, or
    ``{'success': False, 'error': ...}`` when the seller cannot receive
    payouts (a failed SellerPayout is recorded). Raises PayoutError when
    funds are not released or Stripe rejects the transfer.
    """
    purchase = Purchase.objects.select_related('seller').get(pk=purchase.pk)

    if purchase.stripe_transfer_id:
        logger.info(f"Purchase {purchase.order_number} already paid out ({purchase.stripe_transfer_id})")
        return {'success': True, 'skipped': True, 'transfer_id': purchase.stripe_transfer_id}

    if purchase.funds_status not in RELEASED_FUNDS_STATUSES:
        raise PayoutError(f"Cannot payout - funds status is: {purchase.funds_status}")

    seller = purchase.seller
    if not seller.stripe_account_id:
        reason = 'Seller has no Stripe account'
    elif not seller.stripe_payouts_enabled:
        reason = 'Seller payouts not enabled'
    else:
        reason = None

    if reason:
        logger.warning(f"Payout for {purchase.order_number} not sent: {reason}")
        _record_payout(purchase, 'failed', seller.stripe_account_id, failure_reason=reason)
        Purchase.objects.filter(pk=purchase.pk).update(payout_status='failed', updated_at=timezone.now())
        return {'success': False, 'error': reason}

    payout_amount = purchase.seller_payout_amount or (to_money(purchase.total_amount) - platform_fee_for(purchase.item_price))
    try:
        transfer = stripe.Transfer.create(
            api_key=get_stripe_api_key(),
            amount=int((to_money(payout_amount) * 100).to_integral_value()),
            currency=getattr(settings, 'PAYOUT_CURRENCY', 'aud'),
            destination=seller.stripe_account_id,
            transfer_group=purchase.order_number,
            metadata={
                'purchase_id': str(purchase.id),
                'order_number': purchase.order_number,
            },
        )
    except stripe.StripeError as e:
        message = describe_stripe_error(e)
        _record_payout(purchase, 'failed', seller.stripe_account_id, failure_reason=message)
        Purchase.objects.filter(pk=purchase.pk).update(payout_status='failed', updated_at=timezone.now())
        raise PayoutError(message) from e

    now = timezone.now()
    Purchase.objects.filter(pk=purchase.pk).update(
        stripe_transfer_id=transfer.id,
        payout_triggered_at=now,
        payout_status='completed',
        updated_at=now,
    )
    _record_payout(purchase, 'completed', seller.stripe_account_id, transfer_id=transfer.id)
    create_audit_log(
        user=seller,
        action='payout',
        model_name='Purchase',
        object_id=purchase.id,
        object_reference=purchase.order_number,
        changes={'transfer_id': transfer.id, 'amount': str(payout_amount)},
    )
    logger.info(f"Transferred {payout_amount} to seller {seller.id} for {purchase.order_number} ({transfer.id})")
    return {'success': True, 'transfer_id': transfer.id}
