from datetime import datetime, timedelta
from typing import Iterable, Literal, Optional

from database import as_utc, serialize, utcnow

Period = Literal["week", "month", "year"]


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        month = now.month - 1 or 12
        year = now.year if now.month > 1 else now.year - 1
        # clamp e.g. March 31 -> February 28
        for day in (now.day, 30, 29, 28):
            try:
                return now.replace(year=year, month=month, day=day)
            except ValueError:
                continue
    if period == "year":
        try:
            return now.replace(year=now.year - 1)
        except ValueError:
            return now.replace(year=now.year - 1, day=28)
    raise ValueError(f"Unknown period: {period}")


def summarize_orders(orders: Iterable[dict], period: str = "month", now: Optional[datetime] = None) -> dict:
    """Revenue, order counts, daily sales and top products for orders in the period."""
    start = period_start(period, now)
    selected = [o for o in orders if as_utc(o["created_at"]) >= start]
    selected.sort(key=lambda o: as_utc(o["created_at"]), reverse=True)

    total_revenue = 0.0
    products = {}
    by_date = {}

    for order in selected:
        amount = order.get("total_amount", 0)
        total_revenue += amount

        for item in order.get("items", []):
            stats = products.setdefault(
                item["product_id"],
                {"id": item["product_id"], "title": item.get("title"), "revenue": 0.0, "quantity": 0},
            )
            stats["revenue"] += item["price"] * item["quantity"]
            stats["quantity"] += item["quantity"]

        day = as_utc(order["created_at"]).date().isoformat()
        daily = by_date.setdefault(day, {"date": day, "revenue": 0.0, "orders": 0})
        daily["revenue"] += amount
        daily["orders"] += 1

    count = len(selected)
    return {
        "period": period,
        "total_revenue": round(total_revenue, 2),
        "total_orders": count,
        "average_order_value": round(total_revenue / count, 2) if count else 0,
        "recent_orders": [serialize(o) for o in selected[:5]],
        "sales_by_date": sorted(by_date.values(), key=lambda d: d["date"]),
        "top_products": sorted(products.values(), key=lambda p: p["revenue"], reverse=True)[:5],
    }
