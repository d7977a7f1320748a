"""
Payment and Transaction API Views.

Implements:
- GET  /transactions/                    - Ledger (admin: all, delivery: own)
- POST /transactions/                    - Explicit ledger posting (delivery agent)
- GET  /transactions/delivery/           - Entries confirmed by the calling agent
- GET  /transactions/date-range/         - Entries in a date range with total (admin)
- GET  /transactions/{id}/               - Ledger entry detail
- PUT  /transactions/{order_id}/payment/ - Reconcile an order's payment
- PUT  /orders/{order_id}/payment/       - Same, under the order resource
"""
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.roles import Actor, IsAdminRole, IsDeliveryAgent
from core.exceptions import ValidationError
from . import services
from .serializers import (
    DateRangeSerializer,
    PaymentSummarySerializer,
    PaymentUpdateSerializer,
    TransactionCreateSerializer,
    TransactionSerializer,
)

logger = logging.getLogger(__name__)


def page_response(result):
    return Response({
        'transactions': TransactionSerializer(result['transactions'], many=True).data,
        'page': result['page'],
        'pages': result['pages'],
        'total': result['total'],
    })


def payment_response(result, status_code=status.HTTP_200_OK):
    return Response(
        {
            'success': True,
            'order': PaymentSummarySerializer(result.order).data,
            'transaction': TransactionSerializer(result.transaction).data if result.transaction else None,
        },
        status=status_code
    )


def parse_page(params):
    try:
        return int(params.get('page', 1))
    except ValueError:
        raise ValidationError("page must be an integer")


class TransactionListCreateView(APIView):
    """
    GET: List ledger entries visible to the caller
    POST: Record payment collected for an assigned order

    Request Body (POST):
    {
        "order_id": 12,
        "payment_method": "UPI",
        "upi": {"reference": "UTR123"}
    }
    """

    def get(self, request):
        actor = Actor.from_user(request.user)
        return page_response(services.list_transactions(actor, page=parse_page(request.query_params)))

    def post(self, request):
        actor = Actor.from_user(request.user)
        if not actor.is_delivery_agent:
            return Response(
                {'error': 'not_authorized', 'detail': 'Only delivery agents can record collected payments'},
                status=status.HTTP_403_FORBIDDEN
            )

        serializer = TransactionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = services.reconcile_payment(
            data['order_id'],
            actor,
            payment_method=data.get('payment_method'),
            note=data.get('note') or None,
            create_transaction=True,
            upi=data.get('upi'),
        )
        status_code = status.HTTP_201_CREATED if result.transaction else status.HTTP_200_OK
        return payment_response(result, status_code)


class DeliveryTransactionsView(APIView):
    permission_classes = [IsDeliveryAgent]

    def get(self, request):
        actor = Actor.from_user(request.user)
        return page_response(services.list_transactions(actor, page=parse_page(request.query_params)))


class TransactionDateRangeView(APIView):
    """
    GET: Ledger entries between start_date and end_date (ISO 8601).
    """
    permission_classes = [IsAdminRole]

    def get(self, request):
        serializer = DateRangeSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)

        result = services.transactions_in_range(
            serializer.validated_data['start_date'],
            serializer.validated_data['end_date'],
        )
        return Response({
            'transactions': TransactionSerializer(result['transactions'], many=True).data,
            'count': result['count'],
            'total_amount': str(result['total_amount']),
        })


class TransactionDetailView(APIView):
    def get(self, request, pk):
        entry = services.get_transaction(pk, Actor.from_user(request.user))
        return Response(TransactionSerializer(entry).data)


class OrderPaymentView(APIView):
    """
    PUT: Update payment status/method/details, optionally the order status.

    A delivery agent completing a Cash on Delivery or UPI payment posts a
    ledger entry automatically; see PaymentUpdateSerializer for the body.
    """

    def put(self, request, order_id):
        serializer = PaymentUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = services.reconcile_payment(
            order_id,
            Actor.from_user(request.user),
            payment_status=data.get('payment_status'),
            payment_method=data.get('payment_method'),
            payment_details=data.get('payment_details'),
            status=data.get('status'),
            note=data.get('note') or None,
            create_transaction=data['create_transaction'],
            upi=data.get('upi'),
        )
        return payment_response(result)
