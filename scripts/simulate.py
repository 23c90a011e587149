"""
Service Rush Simulation

Drives a running API through full dinner services on many tables at once.
Each table's order is advanced by two competing staff screens that both
read the order and race to move it forward, so every step produces one
winner and one VERSION_CONFLICT that must be refetched and retried.

Run from project root (API on port 8001, tables and menu seeded):
    python scripts/simulate.py --tables 8
"""

import argparse
import asyncio
import os
import random
import sys
import time
from datetime import datetime
from typing import Any, Optional

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

API_BASE_URL = "http://localhost:8001"
STAFF_FLOW = ["PREPARING", "READY", "SERVED", "BILL_REQUESTED"]
PAYMENT_METHODS = ["CASH", "CARD", "UPI"]
GUEST_NAMES = ["Asha", "Ravi", "Meera", "Kabir", "Priya", "Arjun", "Neha", "Vikram"]
MAX_RETRIES = 5


async def fetch_order(client: httpx.AsyncClient, order_id: str) -> dict[str, Any]:
    response = await client.get(f"{API_BASE_URL}/orders/{order_id}")
    response.raise_for_status()
    return response.json()["order"]


async def staff_advance(
    client: httpx.AsyncClient,
    order_id: str,
    target: str,
    actor: str,
    stats: dict[str, int],
) -> bool:
    """
    Move an order to ``target`` the way a staff screen does: read, write
    with the version just seen, and on VERSION_CONFLICT refetch and retry.
    Returns False when another screen already made the move.
    """
    for _ in range(MAX_RETRIES):
        order = await fetch_order(client, order_id)
        if order["status"] == target:
            return False

        response = await client.patch(
            f"{API_BASE_URL}/orders/{order_id}",
            json={"status": target, "version": order["version"]},
            headers={"X-Actor-Id": actor},
        )
        if response.status_code == 200:
            return True

        code = response.json().get("code")
        if code == "VERSION_CONFLICT":
            stats["conflicts"] += 1
            continue
        if code == "INVALID_TRANSITION":
            # The rival screen moved it first; the refetch sees the new status
            stats["late_moves"] += 1
            continue
        raise RuntimeError(f"{actor} could not move {order_id} to {target}: {response.text[:100]}")

    raise RuntimeError(f"{actor} gave up on {order_id} after {MAX_RETRIES} attempts")


async def serve_table(
    client: httpx.AsyncClient,
    table_code: str,
    menu: list[dict[str, Any]],
    stats: dict[str, int],
) -> dict[str, Any]:
    """One party's full visit: order, add-on, two racing staff screens, payment."""
    start_time = time.time()
    result: dict[str, Any] = {"table": table_code, "success": False}

    try:
        items = [
            {"menuItemId": item["id"], "quantity": random.randint(1, 3)}
            for item in random.sample(menu, k=min(3, len(menu)))
        ]
        response = await client.post(
            f"{API_BASE_URL}/orders",
            json={"tableCode": table_code, "items": items},
            headers={"X-Actor-Id": f"guest-{table_code}"},
        )
        if response.status_code != 200:
            result["error"] = response.text[:100]
            return result
        order = response.json()["order"]

        # Waiter upsell without a version: appended regardless of status
        extra = random.choice(menu)
        await client.post(
            f"{API_BASE_URL}/orders/{order['id']}/items",
            json={"items": [{"menuItemId": extra["id"], "quantity": 1}]},
            headers={"X-Actor-Id": "waiter-1"},
        )

        for target in STAFF_FLOW:
            screens = [
                staff_advance(client, order["id"], target, f"screen-{n}", stats)
                for n in (1, 2)
            ]
            await asyncio.gather(*screens)

        order = await fetch_order(client, order["id"])
        response = await client.patch(
            f"{API_BASE_URL}/orders/{order['id']}",
            json={
                "status": "BILL_REQUESTED",
                "version": order["version"],
            },
        )
        stats["duplicate_bill_requests"] += int(response.status_code != 200)

        response = await client.post(
            f"{API_BASE_URL}/orders/{order['id']}/payment",
            json={"method": random.choice(PAYMENT_METHODS), "version": order["version"]},
            headers={"X-Actor-Id": "cashier-1"},
        )
        if response.status_code != 200:
            result["error"] = response.text[:100]
            return result

        closed = response.json()["order"]
        result.update(
            success=True,
            order_id=closed["id"],
            total=closed["total"],
            version=closed["version"],
        )
    except (httpx.HTTPError, RuntimeError) as e:
        result["error"] = str(e)[:100]
    finally:
        result["time"] = round(time.time() - start_time, 3)

    return result


async def reset_tables(client: httpx.AsyncClient, codes: list[str]) -> None:
    """Bus the DIRTY tables so the next run can seat them."""
    for code in codes:
        response = await client.get(f"{API_BASE_URL}/tables", params={"code": code})
        for table in response.json().get("tables", []):
            if table["status"] != "VACANT" and table["activeOrder"] is None:
                await client.patch(f"{API_BASE_URL}/tables/{table['id']}", json={"status": "VACANT"})


async def run_simulation(table_count: int, reset: bool) -> Optional[dict[str, Any]]:
    print("=" * 70)
    print("🔥 SERVICE RUSH SIMULATION - COMPETING STAFF SCREENS")
    print("=" * 70)
    print(f"📋 Tables: {table_count}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    stats = {"conflicts": 0, "late_moves": 0, "duplicate_bill_requests": 0}
    start_time = time.time()

    async with httpx.AsyncClient(timeout=30.0) as client:
        health = await client.get(f"{API_BASE_URL}/health")
        print(f"\n🩺 Health: {health.json().get('status')}")

        menu = (await client.get(f"{API_BASE_URL}/menu", params={"availableOnly": "true"})).json()["items"]
        tables = (await client.get(f"{API_BASE_URL}/tables")).json()["tables"]
        free = [t["tableCode"] for t in tables if t["activeOrder"] is None][:table_count]

        if not menu or not free:
            print("\n❌ Nothing to simulate. Run: python scripts/seed.py")
            return None

        print(f"\n🚀 Seating {len(free)} tables...\n")
        results = await asyncio.gather(*[serve_table(client, code, menu, stats) for code in free])

        if reset:
            await reset_tables(client, free)

    total_time = round(time.time() - start_time, 2)
    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Settled Orders: {len(successful)}/{len(results)}")
    print(f"❌ Failed Orders: {len(failed)}/{len(results)}")
    print(f"⏱️  Total Time: {total_time}s")
    print(f"\n🔁 Version conflicts retried: {stats['conflicts']}")
    print(f"🐢 Moves already made by the rival screen: {stats['late_moves']}")
    print(f"🧾 Duplicate bill requests refused: {stats['duplicate_bill_requests']}")

    if successful:
        revenue = sum(r["total"] for r in successful)
        print(f"\n💰 Total Billed: {revenue:.2f}")
        # create + append + 4 status moves + settlement
        wrong = [r for r in successful if r["version"] != 7]
        print(f"🔢 Orders with unexpected final version: {len(wrong)}")

    if failed:
        print("\n⚠️  Failed Table Details (showing first 5):")
        for f in failed[:5]:
            print(f"   {f['table']}: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print("1. Check Celery terminal - one ledger task per settled order")
    print("2. Run: python scripts/verify.py")
    print("=" * 70)

    return {"stats": stats, "results": results, "total_time": total_time}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Service rush simulation")
    parser.add_argument("--tables", type=int, default=8, help="Tables to seat at once")
    parser.add_argument("--no-reset", action="store_true", help="Leave tables DIRTY afterwards")
    args = parser.parse_args()

    asyncio.run(run_simulation(args.tables, reset=not args.no_reset))
