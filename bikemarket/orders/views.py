import logging
import math
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, IsAdminUser, AllowAny
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db.models import Count, Q
from django.utils.crypto import constant_time_compare
from bikemarket.core.utils import create_audit_log, parse_positive_int
from bikemarket.listings.models import Listing
from .escrow import (
    EscrowError, create_purchase, confirm_receipt, open_dispute, resolve_dispute,
    cancel_purchase, mark_shipped, release_due_funds,
)
from .models import Purchase, SellerPayout
from .payouts import PayoutError, trigger_seller_payout
from .serializers import (
    PurchaseSerializer, PurchaseListSerializer, PurchaseCreateSerializer, SellerPayoutSerializer,
)

logger = logging.getLogger(__name__)

User = get_user_model()


def _get_party_purchase(request, pk):
    """Purchase visible to the requesting buyer or seller, else None"""
    return Purchase.objects.select_related('product', 'buyer', 'seller').filter(
        Q(buyer=request.user) | Q(seller=request.user), pk=pk,
    ).first()


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def purchase_list_create(request):
    """List the user's purchases (buying) or sales (selling), or create a purchase"""
    if request.method == 'GET':
        status_filter = request.query_params.get('status', 'all')
        mode = request.query_params.get('mode', 'buying')
        page = parse_positive_int(request.query_params.get('page'), 1)
        page_size = parse_positive_int(request.query_params.get('pageSize'), 20, maximum=100)

        user_field = 'seller' if mode == 'selling' else 'buyer'
        base = Purchase.objects.filter(**{user_field: request.user})

        purchases = base.select_related('product', 'buyer', 'seller').order_by('-purchase_date')
        if status_filter == 'active':
            purchases = purchases.filter(status__in=Purchase.ACTIVE_STATUSES)
        elif status_filter == 'completed':
            purchases = purchases.filter(status='delivered')
        elif status_filter == 'disputed':
            purchases = purchases.filter(funds_status='disputed')
        elif status_filter != 'all':
            purchases = purchases.filter(status=status_filter)

        total = purchases.count()
        offset = (page - 1) * page_size
        page_items = purchases[offset:offset + page_size]

        counts = base.aggregate(
            all=Count('id'),
            active=Count('id', filter=Q(status__in=Purchase.ACTIVE_STATUSES)),
            completed=Count('id', filter=Q(status='delivered')),
            disputes=Count('id', filter=Q(funds_status='disputed')),
        )
        counts['archived'] = 0

        serializer = PurchaseListSerializer(page_items, many=True, context={'mode': mode})
        return Response({
            'purchases': serializer.data,
            'pagination': {
                'page': page,
                'pageSize': page_size,
                'total': total,
                'totalPages': math.ceil(total / page_size) if total else 0,
            },
            'counts': counts,
        })
    else:  # POST
        data = request.data
        if not data.get('product_id') or not data.get('seller_id') or not data.get('item_price'):
            return Response({'error': 'Missing required fields: product_id, seller_id, item_price'},
                            status=status.HTTP_400_BAD_REQUEST)

        serializer = PurchaseCreateSerializer(data=data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        validated = serializer.validated_data

        seller = User.objects.filter(pk=validated['seller_id']).first()
        if seller is None:
            return Response({'error': 'Seller not found'}, status=status.HTTP_404_NOT_FOUND)
        product = Listing.objects.filter(pk=validated['product_id'], user=seller).first()
        if product is None:
            return Response({'error': 'Product not found for this seller'}, status=status.HTTP_404_NOT_FOUND)
        if seller.id == request.user.id:
            return Response({'error': 'You cannot purchase your own listing'}, status=status.HTTP_400_BAD_REQUEST)
        if product.sold_at or product.listing_status != 'active':
            return Response({'error': 'Listing is not available for purchase'}, status=status.HTTP_400_BAD_REQUEST)

        try:
            purchase = create_purchase(
                buyer=request.user,
                seller=seller,
                product=product,
                item_price=validated['item_price'],
                shipping_cost=validated.get('shipping_cost') or 0,
                tax_amount=validated.get('tax_amount') or 0,
                shipping_address=validated.get('shipping_address'),
                shipping_method=validated.get('shipping_method'),
                payment_method=validated.get('payment_method'),
                buyer_notes=validated.get('buyer_notes'),
            )
        except EscrowError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except Exception as e:
            logger.error(f"Unexpected error creating purchase: {str(e)}", exc_info=True)
            return Response({'error': 'Failed to create purchase'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        create_audit_log(
            request=request,
            action='purchase_create',
            model_name='Purchase',
            object_id=purchase.id,
            object_name=product.description,
            object_reference=purchase.order_number,
            changes={'total_amount': str(purchase.total_amount), 'seller_id': seller.id},
        )
        return Response({'purchase': PurchaseSerializer(purchase).data}, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def purchase_detail(request, pk):
    """Retrieve a purchase the user bought or sold"""
    purchase = _get_party_purchase(request, pk)
    if purchase is None:
        return Response({'error': 'Purchase not found'}, status=status.HTTP_404_NOT_FOUND)
    mode = 'selling' if purchase.seller_id == request.user.id else 'buying'
    data = PurchaseListSerializer(purchase, context={'mode': mode}).data
    if mode == 'selling':
        data['payouts'] = SellerPayoutSerializer(purchase.payouts.all(), many=True).data
    return Response({'purchase': data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def purchase_confirm_receipt(request, pk):
    """Buyer confirms the item arrived; funds are released and the seller is paid"""
    purchase = _get_party_purchase(request, pk)
    if purchase is None:
        return Response({'error': 'Purchase not found'}, status=status.HTTP_404_NOT_FOUND)
    if purchase.buyer_id != request.user.id:
        return Response({'error': 'Only the buyer can confirm receipt'}, status=status.HTTP_403_FORBIDDEN)

    try:
        purchase = confirm_receipt(purchase, request=request)
    except EscrowError as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

    try:
        payout = trigger_seller_payout(purchase)
    except PayoutError as e:
        # Funds stay released; the payout can be retried
        logger.error(f"Payout after confirm-receipt failed for {purchase.order_number}: {str(e)}")
        payout = {'success': False, 'error': str(e)}

    if payout.get('success'):
        message = 'Receipt confirmed. Payment has been released to the seller.'
    else:
        message = 'Receipt confirmed. Funds are released and the seller payout is pending.'

    purchase.refresh_from_db()
    return Response({
        'success': True,
        'message': message,
        'purchase': PurchaseSerializer(purchase).data,
        'payout': payout,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def purchase_ship(request, pk):
    """Seller marks the order as shipped"""
    purchase = _get_party_purchase(request, pk)
    if purchase is None:
        return Response({'error': 'Purchase not found'}, status=status.HTTP_404_NOT_FOUND)
    if purchase.seller_id != request.user.id:
        return Response({'error': 'Only the seller can mark an order as shipped'}, status=status.HTTP_403_FORBIDDEN)
    try:
        purchase = mark_shipped(purchase, tracking_number=request.data.get('tracking_number'), request=request)
    except EscrowError as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
    return Response({'purchase': PurchaseSerializer(purchase).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def purchase_dispute(request, pk):
    """Buyer disputes the order, freezing the held funds"""
    purchase = _get_party_purchase(request, pk)
    if purchase is None:
        return Response({'error': 'Purchase not found'}, status=status.HTTP_404_NOT_FOUND)
    if purchase.buyer_id != request.user.id:
        return Response({'error': 'Only the buyer can open a dispute'}, status=status.HTTP_403_FORBIDDEN)
    try:
        purchase = open_dispute(purchase, request.data.get('reason'), request=request)
    except EscrowError as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
    return Response({'purchase': PurchaseSerializer(purchase).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def purchase_cancel(request, pk):
    """Buyer or seller cancels an unshipped order; held funds are refunded"""
    purchase = _get_party_purchase(request, pk)
    if purchase is None:
        return Response({'error': 'Purchase not found'}, status=status.HTTP_404_NOT_FOUND)
    try:
        purchase = cancel_purchase(purchase, request=request)
    except EscrowError as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
    return Response({'purchase': PurchaseSerializer(purchase).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminUser])
def purchase_resolve_dispute(request, pk):
    """Staff resolves a dispute by releasing funds to the seller or refunding the buyer"""
    purchase = Purchase.objects.filter(pk=pk).first()
    if purchase is None:
        return Response({'error': 'Purchase not found'}, status=status.HTTP_404_NOT_FOUND)
    resolution = request.data.get('resolution')
    try:
        purchase = resolve_dispute(purchase, resolution, request=request)
    except EscrowError as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

    payout = None
    if resolution == 'release':
        try:
            payout = trigger_seller_payout(purchase)
        except PayoutError as e:
            payout = {'success': False, 'error': str(e)}
        purchase.refresh_from_db()
    return Response({'purchase': PurchaseSerializer(purchase).data, 'payout': payout})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def seller_payout_list(request):
    """Payout attempts for the current seller"""
    payouts = SellerPayout.objects.select_related('purchase').filter(seller=request.user)
    payout_status = request.query_params.get('status')
    if payout_status:
        payouts = payouts.filter(status=payout_status)
    return Response({'payouts': SellerPayoutSerializer(payouts, many=True).data})


@api_view(['GET', 'POST'])
@permission_classes([AllowAny])
def release_funds_cron(request):
    """Scheduled job: auto-release held funds whose hold period has lapsed"""
    expected_secret = getattr(settings, 'CRON_SECRET', '')
    if expected_secret:
        provided = request.headers.get('X-Cron-Secret', '')
        if not constant_time_compare(provided, expected_secret):
            logger.warning("Release-funds cron called with an invalid secret")
            return Response({'error': 'Unauthorized'}, status=status.HTTP_401_UNAUTHORIZED)

    try:
        result = release_due_funds()
    except Exception as e:
        logger.error(f"Release-funds cron failed: {str(e)}", exc_info=True)
        return Response({'error': 'Internal server error'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if not result['due']:
        return Response({
            'success': True,
            'released': 0,
            'message': 'No purchases ready for auto-release',
        })
    return Response({
        'success': True,
        'released': result['released'],
        'failed': result['failed'],
        'errors': result['errors'],
    })
