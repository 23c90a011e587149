"""
Closed-Order Ledger with Concurrency Control

Appends one row per closed order to an Excel workbook that the back
office reconciles against the cash drawer. Several Celery workers may
write at once, so every read-modify-write happens under a file lock.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd
from filelock import FileLock, Timeout

from tableside.core.config import get_settings

logger = logging.getLogger(__name__)


class LedgerExporter:
    """Thread- and process-safe Excel ledger of closed orders."""

    LEDGER_COLUMNS = [
        "order_id",
        "table_code",
        "customer_name",
        "session_id",
        "items",
        "item_count",
        "total_amount",
        "currency",
        "payment_method",
        "amount_paid",
        "opened_at",
        "closed_at",
        "exported_at",
    ]

    @classmethod
    def _paths(cls) -> tuple[Path, Path]:
        settings = get_settings()
        data_dir = Path(settings.data_directory)
        ledger_file = data_dir / settings.ledger_filename
        return ledger_file, data_dir / f"{settings.ledger_filename}.lock"

    @classmethod
    def _ensure_data_dir(cls) -> None:
        """Create data directory if needed."""
        data_dir = Path(get_settings().data_directory)
        if not data_dir.exists():
            data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {data_dir}")

    @classmethod
    def _load_or_create_df(cls, file_path: Path) -> pd.DataFrame:
        """Load existing ledger or start an empty one."""
        if file_path.exists():
            try:
                return pd.read_excel(file_path, engine="openpyxl")
            except Exception as e:
                logger.warning(f"Error reading {file_path}: {e}")
        return pd.DataFrame(columns=cls.LEDGER_COLUMNS)

    @classmethod
    def export_order(cls, order_data: dict[str, Any]) -> dict[str, Any]:
        """
        Append a closed order to the ledger.

        Args:
            order_data: Payload built by ``queue_ledger_export``

        Returns:
            Result dict with ``success``, ``message``, ``order_id`` and
            ``exported_at``
        """
        cls._ensure_data_dir()
        ledger_file, lock_file = cls._paths()
        lock_timeout = get_settings().ledger_lock_timeout

        order_id = order_data.get("order_id", "unknown")
        result = {
            "success": False,
            "message": "",
            "order_id": order_id,
            "exported_at": None,
        }

        try:
            with FileLock(str(lock_file), timeout=lock_timeout):
                logger.debug(f"Ledger lock acquired for order {order_id}")

                df = cls._load_or_create_df(ledger_file)

                export_time = datetime.now().isoformat()
                new_row = {
                    "order_id": order_id,
                    "table_code": order_data.get("table_code"),
                    "customer_name": order_data.get("customer_name"),
                    "session_id": order_data.get("session_id"),
                    "items": order_data.get("items"),
                    "item_count": order_data.get("item_count", 0),
                    "total_amount": order_data.get("total_amount"),
                    "currency": order_data.get("currency"),
                    "payment_method": order_data.get("payment_method"),
                    "amount_paid": order_data.get("amount_paid"),
                    "opened_at": order_data.get("created_at"),
                    "closed_at": order_data.get("closed_at"),
                    "exported_at": export_time,
                }

                df = pd.concat([df, pd.DataFrame([new_row])], ignore_index=True)
                df.to_excel(str(ledger_file), index=False, engine="openpyxl")

                logger.info(f"Order {order_id} written to ledger")

                result["success"] = True
                result["message"] = f"Order {order_id} exported"
                result["exported_at"] = export_time

        except Timeout:
            result["message"] = f"Lock timeout ({lock_timeout}s)"
            logger.error(f"Ledger lock timeout for order {order_id}")

        except Exception as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting order {order_id} to ledger")

        return result

    @classmethod
    def get_all_orders(cls) -> list[dict[str, Any]]:
        """Read every ledger row."""
        ledger_file, _ = cls._paths()
        if not ledger_file.exists():
            return []

        try:
            df = pd.read_excel(ledger_file, engine="openpyxl")
            return df.to_dict("records")
        except Exception as e:
            logger.error(f"Error reading ledger: {e}")
            return []

    @classmethod
    def clear_all(cls) -> bool:
        """Delete the ledger and its lock file."""
        try:
            for f in cls._paths():
                if f.exists():
                    f.unlink()
            logger.info("Ledger cleared")
            return True
        except OSError as e:
            logger.error(f"Error clearing ledger: {e}")
            return False
