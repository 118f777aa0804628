# tests/test_load_data.py
import pytest

from adapters.database import DatabaseDataModel
from scripts.load_data import load_preferences, main, verify_data


def test_load_preferences(engine, grouped_file, grouped_preferences):
    inserted = load_preferences(grouped_file, engine, batch_size=3)

    assert inserted == 10
    model = DatabaseDataModel(engine)
    assert model.count_users() == 4
    assert model.count_items() == 5
    assert {p.item.id: p.value for p in model.get_user("A123").preferences} == grouped_preferences["A123"]


def test_load_keeps_string_ids(engine, tmp_path):
    path = tmp_path / "prefs.csv"
    path.write_text("007,010,1.5\n", encoding="utf-8")

    load_preferences(path, engine)

    user = DatabaseDataModel(engine).get_user("007")
    assert user.preferences[0].item.id == "010"


def test_replace_and_append(engine, sample_file, grouped_file):
    load_preferences(grouped_file, engine)
    load_preferences(sample_file, engine)
    assert verify_data(engine) == {"preferences": 3, "users": 2, "items": 2}

    load_preferences(grouped_file, engine, replace=False)
    assert verify_data(engine)["users"] == 6


def test_duplicate_rows_keep_last(engine, tmp_path):
    path = tmp_path / "prefs.csv"
    path.write_text("u1,i1,1.0\nu1,i1,2.0\n", encoding="utf-8")

    assert load_preferences(path, engine) == 1
    assert DatabaseDataModel(engine).get_user("u1").preferences[0].value == 2.0


@pytest.mark.parametrize("value", ["inf", "-inf", "nan"])
def test_non_finite_values_rejected(engine, tmp_path, value):
    path = tmp_path / "prefs.csv"
    path.write_text(f"u1,i1,1.0\nu1,i2,{value}\n", encoding="utf-8")

    with pytest.raises(ValueError, match="row 2"):
        load_preferences(path, engine)

    assert verify_data(engine)["preferences"] == 0


def test_main(tmp_path, sample_file):
    url = f"sqlite:///{tmp_path / 'cli.db'}"

    assert main([str(sample_file), "--database-url", url]) == 0
    assert main([str(tmp_path / "missing.csv"), "--database-url", url]) == 1
