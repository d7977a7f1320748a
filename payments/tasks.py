"""
Celery tasks for the payment ledger.

Tasks:
    - generate_daily_settlement_report: summary of yesterday's ledger entries,
      scheduled by Celery Beat (see config/celery.py)
"""
import logging
from datetime import timedelta

from celery import shared_task
from django.db.models import Count, Sum
from django.utils import timezone

from orders.pricing import ZERO, round2

logger = logging.getLogger(__name__)


@shared_task
def generate_daily_settlement_report():
    """
    Generate the settlement report for the previous day.

    Returns:
        Dict with per-method counts and totals
    """
    from payments.models import Transaction

    today = timezone.localdate()
    yesterday = today - timedelta(days=1)

    entries = Transaction.objects.filter(transaction_date__date=yesterday)

    totals = entries.aggregate(total_transactions=Count('id'), total_amount=Sum('amount'))
    total_amount = round2(totals['total_amount'] or ZERO)
    by_method = {
        row['payment_method']: {'count': row['count'], 'amount': str(round2(row['amount']))}
        for row in entries.values('payment_method').annotate(count=Count('id'), amount=Sum('amount'))
    }

    method_lines = [
        f"    {method}: {data['count']} / {data['amount']}"
        for method, data in sorted(by_method.items())
    ]

    report = f"""
    ===============================================
    DAILY SETTLEMENT REPORT - {yesterday}
    ===============================================
    Transactions: {totals['total_transactions']}
    Total Settled: {total_amount}
{chr(10).join(method_lines)}
    ===============================================
    """

    logger.info(report)

    return {
        'date': str(yesterday),
        'total_transactions': totals['total_transactions'],
        'total_amount': str(total_amount),
        'by_method': by_method,
    }
