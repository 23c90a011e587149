"""
Celery Tasks
Background work that runs after an order unit has committed.
"""

import logging
import time

from tableside.celery_worker import celery_app
from tableside.services.ledger import LedgerExporter

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def export_closed_order(self, order_data: dict) -> dict:
    """
    Append a closed order to the Excel ledger.

    Args:
        order_data: Dictionary built by ``queue_ledger_export``

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    order_id = order_data.get('order_id', 'unknown')

    logger.info(f"Task {task_id}: exporting order {order_id}")
    start_time = time.time()

    result = LedgerExporter.export_order(order_data)

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if result['success']:
        logger.info(f"Task {task_id}: order {order_id} exported in {elapsed}s")
    else:
        logger.warning(f"Task {task_id}: order {order_id} not exported - {result['message']}")

    return result

