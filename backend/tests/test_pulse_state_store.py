from __future__ import annotations

import sys
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from db.models import PulseStateEntry  # noqa: E402
from services.pulse_state_store import InMemoryStateStore, SqlStateStore  # noqa: E402


def _session_factory(tmp_path: Path):
    engine = create_engine(f"sqlite:///{tmp_path / 'pulse_state.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def test_in_memory_store_round_trip():
    store = InMemoryStateStore({"seeded": 1.5})
    assert store.get_float("seeded") == 1.5
    assert store.get_float("missing") is None

    store.set_float("cooldown", 42)
    assert store.get_float("cooldown") == 42.0
    store.remove("cooldown")
    store.remove("cooldown")
    assert store.get_float("cooldown") is None


def test_sql_store_persists_across_instances(tmp_path):
    factory = _session_factory(tmp_path)
    SqlStateStore(factory).set_float("pulse_last_plan_proposal_shown_at", 1736323200.25)

    reopened = SqlStateStore(factory)
    assert reopened.get_float("pulse_last_plan_proposal_shown_at") == 1736323200.25

    reopened.set_float("pulse_last_plan_proposal_shown_at", 1736409600.0)
    assert reopened.get_float("pulse_last_plan_proposal_shown_at") == 1736409600.0

    reopened.remove("pulse_last_plan_proposal_shown_at")
    assert reopened.get_float("pulse_last_plan_proposal_shown_at") is None


def test_sql_store_ignores_non_numeric_values(tmp_path):
    factory = _session_factory(tmp_path)
    with factory() as db:
        db.add(PulseStateEntry(key="corrupt", value="not-a-number"))
        db.commit()

    assert SqlStateStore(factory).get_float("corrupt") is None
