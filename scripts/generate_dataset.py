"""
Sample Variant Payload Generator
Generates flat and provider-nested variant payloads for load-testing the
webhook and upload endpoints.
"""

import json
import random
import uuid
from datetime import date
from pathlib import Path

import numpy as np
import polars as pl
from faker import Faker

fake = Faker()
random.seed(42)
np.random.seed(42)
Faker.seed(42)

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "generated"
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

PRODUCT_TYPES = ["apparel", "footwear", "accessories", "home", "outdoor", "beauty"]
COST_FIELDS = ["cost_price", "cost", "unit_cost"]


# ==========================================
# TIME SERIES
# ==========================================
def month_series(months: int, base: float, noise: float = 0.25) -> dict:
    """Year -> month -> quantity map ending at the last full month."""
    today = date.today()
    year, month = today.year, today.month
    points = []
    for _ in range(months):
        month -= 1
        if month == 0:
            year, month = year - 1, 12
        points.append((year, month))

    seasonal = 1 + 0.3 * np.sin(np.linspace(0, 2 * np.pi, months))
    values = np.maximum(np.random.normal(base * seasonal, base * noise), 0).round()

    series: dict = {}
    for (y, m), value in zip(reversed(points), values):
        series.setdefault(str(y), {})[str(m)] = int(value)
    return series


def forecast_from(series: dict, error: float = 0.15) -> dict:
    """Forecast map shaped like ``series`` with multiplicative noise."""
    return {
        year: {
            month: max(int(round(value * np.random.normal(1, error))), 0)
            for month, value in months.items()
        }
        for year, months in series.items()
    }


# ==========================================
# VARIANTS
# ==========================================
def generate_variants(n=5000, invalid_ratio=0.02):
    print(f"📊 Generating {n:,} flat variants...")

    history = np.random.choice([0, 2, 4, 8, 12, 18, 24], size=n, p=[0.05, 0.05, 0.1, 0.15, 0.25, 0.2, 0.2])
    base_demand = np.random.gamma(2.0, 20.0, n)
    prices = np.round(np.random.uniform(5, 250, n), 2)
    margins = np.random.uniform(0.2, 0.7, n)
    stock = np.random.randint(-20, 2000, n)

    variants = []
    for i in range(n):
        orders = month_series(int(history[i]), base_demand[i]) if history[i] else None
        monthly = base_demand[i]
        variant = {
            "id": str(9_000_000_000 + i),
            "sku": f"SKU-{i:08d}",
            "title": f"{fake.color_name()} {fake.word().title()} {random.choice(['S', 'M', 'L', 'XL'])}",
            "barcode": fake.ean13(),
            "brand": fake.company(),
            "product_type": random.choice(PRODUCT_TYPES),
            "price": float(prices[i]),
            random.choice(COST_FIELDS): float(round(prices[i] * (1 - margins[i]), 2)),
            "in_stock": int(stock[i]),
            "purchase_orders_qty": int(np.random.poisson(monthly)),
            "last_7_days_sales": int(monthly / 4),
            "last_30_days_sales": int(monthly),
            "last_90_days_sales": int(monthly * 3),
            "last_180_days_sales": int(monthly * 6),
            "last_365_days_sales": int(monthly * 12),
            "total_sales": int(monthly * history[i]),
            "orders_by_month": orders,
            "forecast_by_period": forecast_from(orders) if orders else None,
            "current_forecast": float(round(monthly, 2)),
            "replenishment": int(max(monthly * 2 - stock[i], 0)),
            "minimum_stock": int(monthly / 2),
            "lead_time": int(np.random.randint(3, 60)),
            "oos": int(np.random.poisson(2)),
            "oos_last_60_days": int(min(np.random.poisson(1), 60)),
            "forecasted_lost_revenue": float(round(np.random.exponential(50), 2)),
        }
        # A few records the validator must reject
        if random.random() < invalid_ratio:
            if random.random() < 0.5:
                del variant["sku"]
            else:
                variant["price"] = -1
        variants.append(variant)

    path = OUTPUT_DIR / "variants.json"
    path.write_text(json.dumps({"variants": variants}))
    print(f"   ✅ {path.name}: {n:,} records")
    return variants


def nest_variant(variant: dict) -> dict:
    """Reshape a flat variant into the planner export shape."""
    cost = next((variant[f] for f in COST_FIELDS if f in variant), None)
    return {
        "variant_uuid": str(uuid.uuid4()),
        "connections": [{
            "id": variant["id"],
            "sku": variant.get("sku"),
            "title": variant["title"],
            "barcode": variant["barcode"],
            "brand": variant["brand"],
            "product_type": variant["product_type"],
            "price": variant["price"],
            "cost_price": cost,
            "connection_main": True,
        }],
        "warehouse": [{
            "warehouse": "combined",
            "in_stock": variant["in_stock"],
            "replenishment": variant["replenishment"],
            "lead_time": variant["lead_time"],
            "oos": variant["oos"],
            "last_30_days": variant["last_30_days_sales"],
            "last_90_days": variant["last_90_days_sales"],
            "last_180_days": variant["last_180_days_sales"],
            "last_365_days": variant["last_365_days_sales"],
            "orders_by_month": variant["orders_by_month"],
            "forecast_by_period": variant["forecast_by_period"],
            "current_forecast": variant["current_forecast"],
        }],
    }


def write_nested(variants):
    print(f"📊 Writing {len(variants):,} nested variants...")
    items = [{"json": {"variants": [nest_variant(v) for v in variants]}}]
    path = OUTPUT_DIR / "variants_nested.json"
    path.write_text(json.dumps(items))
    print(f"   ✅ {path.name}")


def write_csv(variants):
    print(f"📊 Writing {len(variants):,} variants as CSV...")
    rows = []
    for variant in variants:
        row = {key: value for key, value in variant.items() if key not in ("orders_by_month", "forecast_by_period")}
        row["orders_by_month"] = json.dumps(variant.get("orders_by_month"))
        row["forecast_by_period"] = json.dumps(variant.get("forecast_by_period"))
        rows.append({key: None if value is None else str(value) for key, value in row.items()})

    df = pl.DataFrame(rows, infer_schema_length=None)
    df.write_csv(OUTPUT_DIR / "variants.csv")
    print(f"   ✅ variants.csv: {df.height:,} rows")


def write_chunks(variants, chunk_size=500):
    """Chunk files for driving a chunked session by hand."""
    chunk_dir = OUTPUT_DIR / "chunks"
    chunk_dir.mkdir(exist_ok=True)
    total = (len(variants) + chunk_size - 1) // chunk_size
    for index in range(total):
        chunk = variants[index * chunk_size:(index + 1) * chunk_size]
        (chunk_dir / f"chunk_{index:04d}.json").write_text(json.dumps({"variants": chunk}))
    print(f"   ✅ chunks/: {total} files of up to {chunk_size} records")


# ==========================================
# MAIN
# ==========================================
def main():
    print("=" * 60)
    print("📦 Variant Payload Generator")
    print("=" * 60 + "\n")

    variants = generate_variants(5000)
    write_nested(variants[:1000])
    write_csv(variants)
    write_chunks(variants)

    print("\n" + "=" * 60)
    print("✅ Payload Generation Complete!")
    print("=" * 60)
    print(f"\n📁 Output: {OUTPUT_DIR}\n")


if __name__ == "__main__":
    main()
