"""
Test suite for Orders module
Tests: escrow calculations and transitions, purchase endpoints, Stripe payouts,
auto-release cron and management command
"""
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import patch, MagicMock

import stripe
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status

from bikemarket.core.models import AuditLog
from bikemarket.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from bikemarket.orders import escrow
from bikemarket.orders.models import Purchase, SellerPayout
from bikemarket.orders.payouts import PayoutError, trigger_seller_payout


def make_payout_ready_seller():
    return TestDataFactory.create_user(stripe_account_id='acct_test123', stripe_payouts_enabled=True)


class EscrowTests(TestCase):
    """Test escrow amounts and funds status transitions"""

    def test_platform_fee_rounds_to_cents(self):
        """Test the 3% fee on the item price"""
        self.assertEqual(escrow.platform_fee_for(Decimal('100.00')), Decimal('3.00'))
        self.assertEqual(escrow.platform_fee_for('33.33'), Decimal('1.00'))

    def test_create_purchase_amounts(self):
        """Test totals, fee and payout amounts on a new purchase"""
        purchase = TestDataFactory.create_purchase(item_price=Decimal('1000.00'), shipping_cost=Decimal('50.00'),
                                                   tax_amount=Decimal('10.00'))
        self.assertEqual(purchase.total_amount, Decimal('1060.00'))
        self.assertEqual(purchase.platform_fee, Decimal('30.00'))
        self.assertEqual(purchase.seller_payout_amount, Decimal('1030.00'))
        self.assertEqual(purchase.funds_status, 'held')
        self.assertRegex(purchase.order_number, r'^ORD-\d{8}-\d{5}$')

    def test_funds_release_after_hold_days(self):
        """Test release date follows the hold period"""
        with override_settings(FUNDS_HOLD_DAYS=3):
            before = timezone.now()
            purchase = TestDataFactory.create_purchase()
        self.assertGreaterEqual(purchase.funds_release_at, before + timedelta(days=3))
        self.assertLess(purchase.funds_release_at, before + timedelta(days=3, minutes=1))

    def test_create_purchase_rejects_zero_price(self):
        """Test non-positive prices raise EscrowError"""
        with self.assertRaises(escrow.EscrowError):
            TestDataFactory.create_purchase(item_price=0)

    def test_transition_table(self):
        """Test allowed and forbidden transitions"""
        self.assertTrue(escrow.can_transition('held', 'released'))
        self.assertTrue(escrow.can_transition('disputed', 'refunded'))
        self.assertTrue(escrow.can_transition('disputed', 'released'))
        self.assertFalse(escrow.can_transition('released', 'held'))
        self.assertFalse(escrow.can_transition('refunded', 'released'))

    def test_transition_writes_audit_log(self):
        """Test funds transitions are audited with the order number"""
        purchase = TestDataFactory.create_purchase()
        escrow.transition_funds(purchase, 'disputed', dispute_reason='Broken')
        log = AuditLog.objects.get(action='funds_dispute')
        self.assertEqual(log.object_reference, purchase.order_number)
        self.assertEqual(log.changes['funds_status'], {'old': 'held', 'new': 'disputed'})

    def test_invalid_transition_raises(self):
        """Test released funds cannot be disputed"""
        purchase = TestDataFactory.create_purchase()
        escrow.confirm_receipt(purchase)
        purchase.refresh_from_db()
        with self.assertRaises(escrow.EscrowError):
            escrow.open_dispute(purchase, 'Too late')

    def test_cancel_after_shipping_fails(self):
        """Test shipped orders cannot be cancelled"""
        purchase = TestDataFactory.create_purchase()
        escrow.mark_shipped(purchase, tracking_number='TRK1')
        with self.assertRaises(escrow.EscrowError):
            escrow.cancel_purchase(purchase)


class PayoutTests(TestCase):
    """Test Stripe Connect transfers to sellers"""

    def setUp(self):
        self.seller = make_payout_ready_seller()

    @patch('bikemarket.orders.payouts.stripe.Transfer.create')
    def test_payout_transfers_seller_share(self, mock_transfer):
        """Test a released purchase transfers the payout amount in cents"""
        mock_transfer.return_value = MagicMock(id='tr_123')
        purchase = TestDataFactory.create_purchase(seller=self.seller, item_price=Decimal('200.00'))
        purchase = escrow.confirm_receipt(purchase)

        result = trigger_seller_payout(purchase)
        self.assertEqual(result, {'success': True, 'transfer_id': 'tr_123'})
        kwargs = mock_transfer.call_args.kwargs
        self.assertEqual(kwargs['amount'], 19400)
        self.assertEqual(kwargs['destination'], 'acct_test123')
        purchase.refresh_from_db()
        self.assertEqual(purchase.payout_status, 'completed')
        self.assertEqual(purchase.stripe_transfer_id, 'tr_123')
        self.assertEqual(SellerPayout.objects.get(purchase=purchase).status, 'completed')

    @patch('bikemarket.orders.payouts.stripe.Transfer.create')
    def test_payout_is_idempotent(self, mock_transfer):
        """Test a second payout call does not transfer again"""
        mock_transfer.return_value = MagicMock(id='tr_123')
        purchase = escrow.confirm_receipt(TestDataFactory.create_purchase(seller=self.seller))
        trigger_seller_payout(purchase)
        result = trigger_seller_payout(purchase)
        self.assertTrue(result['skipped'])
        self.assertEqual(mock_transfer.call_count, 1)

    def test_payout_requires_released_funds(self):
        """Test held funds cannot be paid out"""
        purchase = TestDataFactory.create_purchase(seller=self.seller)
        with self.assertRaises(PayoutError):
            trigger_seller_payout(purchase)

    @patch('bikemarket.orders.payouts.stripe.Transfer.create')
    def test_payout_without_stripe_account(self, mock_transfer):
        """Test sellers without a connected account get a failed payout record"""
        purchase = escrow.confirm_receipt(TestDataFactory.create_purchase())
        result = trigger_seller_payout(purchase)
        self.assertFalse(result['success'])
        self.assertEqual(result['error'], 'Seller has no Stripe account')
        mock_transfer.assert_not_called()
        self.assertEqual(SellerPayout.objects.get(purchase=purchase).status, 'failed')

    @patch('bikemarket.orders.payouts.stripe.Transfer.create')
    def test_stripe_error_raises_payout_error(self, mock_transfer):
        """Test Stripe failures are recorded and raised"""
        mock_transfer.side_effect = stripe.InvalidRequestError('Insufficient funds', param='amount')
        purchase = escrow.confirm_receipt(TestDataFactory.create_purchase(seller=self.seller))
        with self.assertRaises(PayoutError):
            trigger_seller_payout(purchase)
        purchase.refresh_from_db()
        self.assertEqual(purchase.payout_status, 'failed')


class PurchaseAPITests(TestCase):
    """Test purchase endpoints"""

    def setUp(self):
        self.buyer = TestDataFactory.create_user()
        self.seller = make_payout_ready_seller()
        self.listing = TestDataFactory.create_listing(user=self.seller, price=Decimal('500.00'))
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.buyer)

    def test_create_purchase(self):
        """Test buying a listing"""
        data = {
            'product_id': self.listing.id,
            'seller_id': self.seller.id,
            'item_price': '500.00',
            'shipping_cost': '25.00',
            'shipping_address': {'city': 'Sydney'},
        }
        response = self.client.post('/api/marketplace/purchases/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['purchase']['total_amount'], '525.00')
        self.assertEqual(response.data['purchase']['platform_fee'], '15.00')
        self.assertTrue(AuditLog.objects.filter(action='purchase_create').exists())

    def test_create_purchase_missing_fields(self):
        """Test required fields"""
        response = self.client.post('/api/marketplace/purchases/', {'product_id': self.listing.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('Missing required fields', response.data['error'])

    def test_cannot_buy_own_listing(self):
        """Test sellers cannot buy from themselves"""
        self.client.authenticate_user(self.seller)
        data = {'product_id': self.listing.id, 'seller_id': self.seller.id, 'item_price': '500.00'}
        response = self.client.post('/api/marketplace/purchases/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cannot_buy_sold_listing(self):
        """Test sold listings are not purchasable"""
        self.listing.sold_at = timezone.now()
        self.listing.save()
        data = {'product_id': self.listing.id, 'seller_id': self.seller.id, 'item_price': '500.00'}
        response = self.client.post('/api/marketplace/purchases/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_purchases_buying_and_selling(self):
        """Test mode switches between purchases and sales with counts"""
        purchase = TestDataFactory.create_purchase(buyer=self.buyer, seller=self.seller, product=self.listing)
        escrow.open_dispute(purchase, 'Wrong size')

        response = self.client.get('/api/marketplace/purchases/')
        self.assertEqual(response.data['pagination']['total'], 1)
        self.assertEqual(response.data['counts']['disputes'], 1)
        self.assertIsNotNone(response.data['purchases'][0]['seller'])

        response = self.client.get('/api/marketplace/purchases/', {'mode': 'selling'})
        self.assertEqual(response.data['pagination']['total'], 0)

        self.client.authenticate_user(self.seller)
        response = self.client.get('/api/marketplace/purchases/', {'mode': 'selling', 'status': 'disputed'})
        self.assertEqual(response.data['pagination']['total'], 1)
        self.assertIsNotNone(response.data['purchases'][0]['buyer'])

    def test_detail_hidden_from_third_party(self):
        """Test only buyer and seller can see a purchase"""
        purchase = TestDataFactory.create_purchase(buyer=self.buyer, seller=self.seller, product=self.listing)
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get(f'/api/marketplace/purchases/{purchase.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    @patch('bikemarket.orders.payouts.stripe.Transfer.create')
    def test_confirm_receipt_releases_and_pays(self, mock_transfer):
        """Test buyer confirmation releases funds and triggers the payout"""
        mock_transfer.return_value = MagicMock(id='tr_999')
        purchase = TestDataFactory.create_purchase(buyer=self.buyer, seller=self.seller, product=self.listing)
        response = self.client.post(f'/api/marketplace/purchases/{purchase.id}/confirm-receipt/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['purchase']['funds_status'], 'released')
        self.assertEqual(response.data['purchase']['status'], 'delivered')
        self.assertEqual(response.data['payout']['transfer_id'], 'tr_999')

    def test_confirm_receipt_without_payout_account(self):
        """Test the reply does not claim the seller was paid when the payout is not sent"""
        seller = TestDataFactory.create_user()
        listing = TestDataFactory.create_listing(user=seller, price=Decimal('200.00'))
        purchase = TestDataFactory.create_purchase(buyer=self.buyer, seller=seller, product=listing)
        response = self.client.post(f'/api/marketplace/purchases/{purchase.id}/confirm-receipt/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['purchase']['funds_status'], 'released')
        self.assertFalse(response.data['payout']['success'])
        self.assertNotIn('released to the seller', response.data['message'])
        self.assertIn('payout is pending', response.data['message'])

    def test_confirm_receipt_seller_forbidden(self):
        """Test sellers cannot confirm receipt"""
        purchase = TestDataFactory.create_purchase(buyer=self.buyer, seller=self.seller, product=self.listing)
        self.client.authenticate_user(self.seller)
        response = self.client.post(f'/api/marketplace/purchases/{purchase.id}/confirm-receipt/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_confirm_receipt_twice(self):
        """Test confirming already released funds fails"""
        purchase = TestDataFactory.create_purchase(buyer=self.buyer, seller=self.seller, product=self.listing)
        escrow.confirm_receipt(purchase)
        response = self.client.post(f'/api/marketplace/purchases/{purchase.id}/confirm-receipt/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_ship_and_dispute(self):
        """Test seller ships and buyer disputes"""
        purchase = TestDataFactory.create_purchase(buyer=self.buyer, seller=self.seller, product=self.listing)
        seller_client = AuthenticatedAPIClient().authenticate_user(self.seller)
        response = seller_client.post(f'/api/marketplace/purchases/{purchase.id}/ship/', {'tracking_number': 'AU123'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['purchase']['tracking_number'], 'AU123')

        response = self.client.post(f'/api/marketplace/purchases/{purchase.id}/dispute/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.post(f'/api/marketplace/purchases/{purchase.id}/dispute/', {'reason': 'Damaged'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['purchase']['funds_status'], 'disputed')

    def test_cancel_refunds_held_funds(self):
        """Test cancelling before shipping refunds the buyer"""
        purchase = TestDataFactory.create_purchase(buyer=self.buyer, seller=self.seller, product=self.listing)
        response = self.client.post(f'/api/marketplace/purchases/{purchase.id}/cancel/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['purchase']['status'], 'cancelled')
        self.assertEqual(response.data['purchase']['funds_status'], 'refunded')

    def test_resolve_dispute_admin_only(self):
        """Test staff refund of a disputed purchase"""
        purchase = TestDataFactory.create_purchase(buyer=self.buyer, seller=self.seller, product=self.listing)
        escrow.open_dispute(purchase, 'Not as described')
        response = self.client.post(f'/api/marketplace/purchases/{purchase.id}/resolve-dispute/', {'resolution': 'refund'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        admin_client = AuthenticatedAPIClient().authenticate_user(TestDataFactory.create_user(is_staff=True))
        response = admin_client.post(f'/api/marketplace/purchases/{purchase.id}/resolve-dispute/', {'resolution': 'refund'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['purchase']['funds_status'], 'refunded')
        self.assertIsNone(response.data['payout'])

    @patch('bikemarket.orders.payouts.stripe.Transfer.create')
    def test_resolve_dispute_release_pays_seller(self, mock_transfer):
        """Test staff release of a disputed purchase releases funds and pays the seller"""
        mock_transfer.return_value = MagicMock(id='tr_dispute')
        purchase = TestDataFactory.create_purchase(buyer=self.buyer, seller=self.seller, product=self.listing)
        escrow.open_dispute(purchase, 'Late delivery')

        admin_client = AuthenticatedAPIClient().authenticate_user(TestDataFactory.create_user(is_staff=True))
        response = admin_client.post(f'/api/marketplace/purchases/{purchase.id}/resolve-dispute/', {'resolution': 'release'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['purchase']['funds_status'], 'released')
        self.assertEqual(response.data['purchase']['status'], 'delivered')
        self.assertEqual(response.data['payout']['transfer_id'], 'tr_dispute')
        mock_transfer.assert_called_once()
        purchase.refresh_from_db()
        self.assertEqual(purchase.stripe_transfer_id, 'tr_dispute')

    def test_seller_payout_list(self):
        """Test sellers see their own payout attempts"""
        purchase = escrow.confirm_receipt(TestDataFactory.create_purchase(buyer=self.buyer, product=self.listing,
                                                                         seller=TestDataFactory.create_user()))
        trigger_seller_payout(purchase)
        seller_client = AuthenticatedAPIClient().authenticate_user(purchase.seller)
        response = seller_client.get('/api/marketplace/payouts/', {'status': 'failed'})
        self.assertEqual(len(response.data['payouts']), 1)


class ReleaseFundsTests(TestCase):
    """Test auto-release of held funds"""

    def make_due_purchase(self, seller=None):
        purchase = TestDataFactory.create_purchase(seller=seller)
        Purchase.objects.filter(pk=purchase.pk).update(funds_release_at=timezone.now() - timedelta(hours=1))
        return purchase

    @patch('bikemarket.orders.payouts.stripe.Transfer.create')
    def test_release_due_funds(self, mock_transfer):
        """Test only lapsed holds are released"""
        mock_transfer.return_value = MagicMock(id='tr_auto')
        due = self.make_due_purchase(seller=make_payout_ready_seller())
        not_due = TestDataFactory.create_purchase()
        result = escrow.release_due_funds()
        self.assertEqual(result['released'], 1)
        self.assertEqual(result['failed'], 0)
        due.refresh_from_db()
        not_due.refresh_from_db()
        self.assertEqual(due.funds_status, 'auto_released')
        self.assertEqual(due.stripe_transfer_id, 'tr_auto')
        self.assertEqual(not_due.funds_status, 'held')

    @patch('bikemarket.orders.payouts.stripe.Transfer.create')
    def test_transfer_failure_counts_as_failed(self, mock_transfer):
        """Test Stripe errors are reported per purchase"""
        mock_transfer.side_effect = stripe.APIConnectionError('Network down')
        purchase = self.make_due_purchase(seller=make_payout_ready_seller())
        result = escrow.release_due_funds()
        self.assertEqual(result['failed'], 1)
        self.assertIn(purchase.order_number, result['errors'][0])

    @override_settings(CRON_SECRET='s3cret')
    def test_cron_requires_secret(self):
        """Test the cron endpoint checks X-Cron-Secret"""
        client = AuthenticatedAPIClient()
        response = client.post('/api/cron/release-funds/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        response = client.post('/api/cron/release-funds/', HTTP_X_CRON_SECRET='s3cret')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'No purchases ready for auto-release')

    @override_settings(CRON_SECRET='')
    def test_cron_releases_without_payout_account(self):
        """Test sellers without Stripe still count as released"""
        self.make_due_purchase()
        response = AuthenticatedAPIClient().post('/api/cron/release-funds/')
        self.assertEqual(response.data['released'], 1)
        self.assertEqual(response.data['failed'], 0)

    def test_release_funds_command(self):
        """Test the management command dry run and release"""
        purchase = self.make_due_purchase()
        out = StringIO()
        call_command('release_funds', '--dry-run', stdout=out)
        self.assertIn(purchase.order_number, out.getvalue())
        purchase.refresh_from_db()
        self.assertEqual(purchase.funds_status, 'held')

        out = StringIO()
        call_command('release_funds', stdout=out)
        self.assertIn('Released 1 purchases', out.getvalue())
