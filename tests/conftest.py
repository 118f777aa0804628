# tests/conftest.py - Shared fixtures
import pytest
from sqlalchemy import create_engine

from adapters.database import DatabaseDataModel, init_db

SAMPLE_LINES = "u1,i1,3.0\nu1,i2,4.0\nu2,i1,5.0\n"

# Four users over five items
GROUPED_PREFERENCES = {
    "A123": {"456": 0.1, "789": 0.6, "654": 0.7},
    "B234": {"123": 0.5, "234": 1.0},
    "C345": {"789": 0.6, "654": 0.7, "123": 1.0, "234": 0.5},
    "D456": {"456": 0.1},
}


def preference_lines(grouped=GROUPED_PREFERENCES):
    return "".join(
        f"{user_id},{item_id},{value}\n"
        for user_id, prefs in grouped.items()
        for item_id, value in prefs.items()
    )


@pytest.fixture
def grouped_preferences():
    return GROUPED_PREFERENCES


@pytest.fixture
def sample_file(tmp_path):
    path = tmp_path / "preferences.csv"
    path.write_text(SAMPLE_LINES, encoding="utf-8")
    return path


@pytest.fixture
def grouped_file(tmp_path):
    path = tmp_path / "grouped.csv"
    path.write_text(preference_lines(), encoding="utf-8")
    return path


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'taste.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_model(engine):
    return DatabaseDataModel(engine)


@pytest.fixture
def populated_db_model(db_model):
    for user_id, prefs in GROUPED_PREFERENCES.items():
        for item_id, value in prefs.items():
            db_model.set_preference(user_id, item_id, value)
    return db_model
