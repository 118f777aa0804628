# scripts/load_data.py - Bulk import of a preference file into the database
import argparse
import math
import time
from pathlib import Path
from typing import Optional, Union

import pandas as pd
from sqlalchemy import delete, func, insert, select
from sqlalchemy.engine import Engine

from adapters.database import PreferenceModel, create_engine_from_settings, init_db
from config import settings

COLUMNS = ["user_id", "item_id", "preference"]


def read_preferences(csv_path: Union[str, Path]) -> pd.DataFrame:
    """Read a headerless ``user,item,value`` file; IDs stay strings"""
    df = pd.read_csv(
        csv_path,
        header=None,
        names=COLUMNS,
        dtype={"user_id": str, "item_id": str},
        keep_default_na=False,
        skip_blank_lines=True,
    )
    df["preference"] = pd.to_numeric(df["preference"], errors="raise").astype(float)

    # Preference values must be finite; to_numeric accepts nan and inf
    bad = df[~df["preference"].between(-math.inf, math.inf, inclusive="neither")]
    if not bad.empty:
        row = int(bad.index[0]) + 1
        raise ValueError(f"{csv_path} row {row}: preference value must be finite, got {bad['preference'].iloc[0]}")

    # Later rows win for a repeated (user, item) pair
    before = len(df)
    df = df.drop_duplicates(subset=["user_id", "item_id"], keep="last")
    if len(df) != before:
        print(f"   ⚠️  Dropped {before - len(df):,} duplicate (user, item) rows")
    return df


def load_preferences(
    csv_path: Union[str, Path],
    engine: Engine,
    batch_size: int = 1000,
    replace: bool = True
) -> int:
    """Load preferences from file into the preference table; returns rows inserted"""
    print(f"📊 Loading preferences from {csv_path}...")

    df = read_preferences(csv_path)
    print(f"   Found {len(df):,} preferences")

    init_db(engine)

    try:
        with engine.begin() as conn:
            if replace:
                conn.execute(delete(PreferenceModel))
                print("   Cleared existing preference data")

            total_batches = len(df) // batch_size + 1
            for i in range(0, len(df), batch_size):
                batch = df.iloc[i:i + batch_size]
                conn.execute(insert(PreferenceModel), batch.to_dict(orient="records"))

                batch_num = i // batch_size + 1
                if batch_num % 100 == 0:
                    print(f"   Preferences: {batch_num}/{total_batches} batches")

        print("✅ Preferences loaded successfully")
        return len(df)

    except Exception as e:
        print(f"❌ Error loading preferences: {e}")
        raise


def verify_data(engine: Engine) -> dict:
    """Report row and distinct-key counts of the preference table"""
    print("🔍 Verifying data...")

    with engine.connect() as conn:
        rows = conn.execute(select(func.count()).select_from(PreferenceModel)).scalar_one()
        users = conn.execute(select(func.count(func.distinct(PreferenceModel.user_id)))).scalar_one()
        items = conn.execute(select(func.count(func.distinct(PreferenceModel.item_id)))).scalar_one()
        sample = conn.execute(
            select(PreferenceModel.user_id, PreferenceModel.item_id, PreferenceModel.preference).limit(1)
        ).first()

    print("✅ Database verification:")
    print(f"   Preferences in DB: {rows:,}")
    print(f"   Distinct users: {users:,}")
    print(f"   Distinct items: {items:,}")
    if sample is not None:
        print(f"   Sample preference: {tuple(sample)}")

    return {"preferences": rows, "users": users, "items": items}


def main(argv: Optional[list] = None) -> int:
    """Load a preference file into DATABASE_URL"""
    parser = argparse.ArgumentParser(description="Load a user,item,value file into the preference table")
    parser.add_argument("csv_path", nargs="?", default=settings.DATA_FILE, help="Preference file to load")
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    parser.add_argument("--batch-size", type=int, default=1000)
    parser.add_argument("--append", action="store_true", help="Keep existing rows instead of replacing them")
    args = parser.parse_args(argv)

    try:
        print("🔄 Starting data loading process...")
        start_time = time.time()

        engine = create_engine_from_settings(args.database_url)
        load_preferences(args.csv_path, engine, batch_size=args.batch_size, replace=not args.append)
        verify_data(engine)

        print(f"🎉 Data loading completed in {time.time() - start_time:.1f}s!")
        return 0

    except Exception as e:
        print(f"❌ Error: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
