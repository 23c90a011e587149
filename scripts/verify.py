"""
Ledger Verification Script

Checks the closed-order ledger written by the Celery workers.
Run from project root: python scripts/verify.py [--clear]
"""

import argparse
import os
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd

from tableside.core.config import get_settings
from tableside.services.ledger import LedgerExporter


def verify_ledger() -> bool:
    """Verify ledger integrity after a simulation run."""
    settings = get_settings()
    ledger_file = Path(settings.data_directory) / settings.ledger_filename

    print("=" * 60)
    print("🔍 LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {ledger_file}")
    print("=" * 60)

    if not ledger_file.exists():
        print("\n❌ Ledger file not found!")
        print("   Settle some orders first: python scripts/simulate.py")
        return False

    try:
        df = pd.read_excel(ledger_file, engine="openpyxl")
        print("\n✅ File loaded successfully!")
    except Exception as e:
        print(f"\n❌ Could not read ledger: {e}")
        return False

    print("\n📊 STATISTICS:")
    print(f"   Closed Orders: {len(df)}")
    print(f"   Columns: {len(df.columns)}")

    missing = [col for col in LedgerExporter.LEDGER_COLUMNS if col not in df.columns]
    if missing:
        print(f"\n⚠️ Missing Columns: {missing}")
    else:
        print("\n✅ All ledger columns present")

    ok = not missing
    if "order_id" in df.columns:
        duplicates = int(df["order_id"].duplicated().sum())
        if duplicates:
            print(f"\n⚠️ {duplicates} duplicate order IDs found!")
            ok = False
        else:
            print("✅ No duplicate order IDs")

    if {"total_amount", "amount_paid"} <= set(df.columns):
        short = df[df["amount_paid"] < df["total_amount"]]
        if len(short):
            print(f"\n⚠️ {len(short)} orders settled below their total!")
            ok = False
        else:
            print("✅ Every order paid in full")

        print("\n💰 REVENUE:")
        print(f"   Billed: {df['total_amount'].sum():.2f} {settings.currency}")
        print(f"   Collected: {df['amount_paid'].sum():.2f} {settings.currency}")
        if "payment_method" in df.columns:
            for method, amount in df.groupby("payment_method")["amount_paid"].sum().items():
                print(f"   {method}: {amount:.2f}")

    print("\n📋 RECENT ORDERS:")
    print("-" * 60)
    if len(df) > 0:
        cols = [c for c in ["order_id", "table_code", "total_amount", "payment_method", "closed_at"] if c in df.columns]
        print(df[cols].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "⚠️ VERIFICATION FOUND ISSUES")
    print("=" * 60)

    return ok


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ledger verification")
    parser.add_argument("--clear", action="store_true", help="Delete the ledger after reporting")
    args = parser.parse_args()

    ok = verify_ledger()
    if args.clear:
        print("\n🧹 Ledger cleared" if LedgerExporter.clear_all() else "\n❌ Could not clear ledger")
    sys.exit(0 if ok else 1)
