"""
URL routing for payment and transaction endpoints.
"""
from django.urls import path
from . import views

app_name = 'payments'

urlpatterns = [
    path('transactions/', views.TransactionListCreateView.as_view(), name='transaction-list'),
    path('transactions/delivery/', views.DeliveryTransactionsView.as_view(), name='transaction-delivery'),
    path('transactions/date-range/', views.TransactionDateRangeView.as_view(), name='transaction-date-range'),
    path('transactions/<int:pk>/', views.TransactionDetailView.as_view(), name='transaction-detail'),
    path('transactions/<int:order_id>/payment/', views.OrderPaymentView.as_view(), name='transaction-payment'),
    path('orders/<int:order_id>/payment/', views.OrderPaymentView.as_view(), name='order-payment'),
]
