"""
Order API Views.

Implements:
- GET  /orders/                       - Role-scoped, filtered, paginated list
- POST /orders/                       - Place an order (rate limited)
- GET  /orders/{id}/                  - Order detail with items and history
- PUT  /orders/{id}/status/           - Role-gated status transition
- POST /orders/{id}/cancel/           - Customer cancellation
- POST /orders/{id}/rate/             - Customer rating of a delivered order
- PUT  /orders/{id}/delivery-agent/   - Assign / unassign delivery agent (admin)
- GET  /orders/stats/                 - Aggregate statistics (admin)

Domain errors raised by the services are rendered by
core.exceptions.api_exception_handler.
"""
import logging

from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.roles import Actor, IsAdminRole
from core.exceptions import ValidationError
from core.rate_limiting import RateLimitMixin
from . import services
from .models import Order
from .serializers import (
    AssignAgentSerializer,
    OrderCreateSerializer,
    OrderListSerializer,
    OrderSerializer,
    RatingSerializer,
    StatusChangeSerializer,
    StatusUpdateRequestSerializer,
)

logger = logging.getLogger(__name__)


def parse_list_filters(params) -> dict:
    filters = {}
    if params.get('status'):
        if params['status'] not in Order.Status.values:
            raise ValidationError(f"Unknown status: {params['status']}")
        filters['status'] = params['status']
    if params.get('active') in ('1', 'true', 'True'):
        filters['exclude_statuses'] = list(Order.TERMINAL_STATUSES)
    if params.get('date'):
        day = parse_date(params['date'])
        if day is None:
            raise ValidationError("date must be YYYY-MM-DD")
        filters['date'] = day
    for name in ('date_from', 'date_to'):
        if params.get(name):
            value = parse_datetime(params[name])
            if value is None:
                raise ValidationError(f"{name} must be an ISO 8601 datetime")
            filters[name] = value
    for name in ('delivery_agent_name', 'search'):
        if params.get(name):
            filters[name] = params[name]
    return filters


def parse_page(params):
    try:
        page = int(params.get('page', 1))
        page_size = int(params['page_size']) if params.get('page_size') else None
    except ValueError:
        raise ValidationError("page and page_size must be integers")
    return page, page_size


class OrderListCreateView(RateLimitMixin, APIView):
    """
    GET: List orders visible to the caller

    Query Parameters (GET):
        - status, active, date, date_from, date_to, delivery_agent_name, search
        - sort: created_at, total or status (prefix '-' for descending)
        - page, page_size

    POST: Place an order; see OrderCreateSerializer for the body.
    """
    rate_limit_max_requests = 10
    rate_limit_window_seconds = 60
    rate_limit_methods = ('POST',)

    def get(self, request):
        actor = Actor.from_user(request.user)
        page, page_size = parse_page(request.query_params)
        result = services.list_orders(
            actor,
            parse_list_filters(request.query_params),
            page=page,
            page_size=page_size,
            sort=request.query_params.get('sort', '-created_at'),
        )
        return Response({
            'orders': OrderListSerializer(result['orders'], many=True).data,
            'page': result['page'],
            'pages': result['pages'],
            'total': result['total'],
        })

    def post(self, request):
        """
        Returns:
            - 201: Order created in Pending status
            - 400: Validation error (items, address, minimum order, discount code)
            - 403: Caller is not a customer
        """
        actor = Actor.from_user(request.user)
        if not actor.is_customer:
            logger.warning(f"Order placement refused for {actor.label} #{actor.id}")
            return Response(
                {'error': 'not_authorized', 'detail': 'Only customers can place orders'},
                status=status.HTTP_403_FORBIDDEN
            )

        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = services.create_order(
            actor,
            items=data['items'],
            address=data['address'],
            payment_method=data['payment_method'],
            discount_code=data.get('discount_code') or None,
            notes=data.get('notes', ''),
            payment_details=data.get('payment_details'),
            customer_phone=data.get('customer_phone', ''),
            discounts=data.get('discounts'),
        )
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class OrderDetailView(APIView):
    def get(self, request, pk):
        order = services.get_order(pk, Actor.from_user(request.user))
        return Response(OrderSerializer(order).data)


class OrderStatusView(APIView):
    """
    PUT: Move the order to a new status.

    Request Body:
        {"status": "Out for delivery", "note": "optional"}
    """

    def put(self, request, pk):
        serializer = StatusUpdateRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.transition_status(
            pk,
            Actor.from_user(request.user),
            serializer.validated_data['status'],
            serializer.validated_data.get('note') or None,
        )
        return Response({'success': True, 'order': StatusChangeSerializer(order).data})


class OrderCancelView(APIView):
    def post(self, request, pk):
        order = services.cancel_order(
            pk,
            Actor.from_user(request.user),
            request.data.get('note') or None,
        )
        return Response({'success': True, 'order': StatusChangeSerializer(order).data})


class OrderRatingView(APIView):
    def post(self, request, pk):
        serializer = RatingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.rate_order(
            pk,
            Actor.from_user(request.user),
            serializer.validated_data['rating'],
            serializer.validated_data.get('comment', ''),
        )
        return Response(OrderSerializer(order).data)


class OrderAssignAgentView(APIView):
    """
    PUT: Assign a delivery agent, or unassign with {"delivery_agent_id": null}.
    """
    permission_classes = [IsAdminRole]

    def put(self, request, pk):
        serializer = AssignAgentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.assign_delivery_agent(
            pk,
            Actor.from_user(request.user),
            serializer.validated_data['delivery_agent_id'],
        )
        return Response(OrderSerializer(order).data)


class OrderStatsView(APIView):
    """GET: Order counts per status, unpaid orders and delivered revenue."""
    permission_classes = [IsAdminRole]

    def get(self, request):
        return Response(services.order_stats(Actor.from_user(request.user)))
