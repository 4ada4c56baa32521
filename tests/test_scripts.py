from hirepath.db.models import SubscriptionPlan
from scripts.seed_plans import DEFAULT_PLANS, seed_plans


def test_seed_plans_is_idempotent(db):
    assert seed_plans(db) == len(DEFAULT_PLANS)
    assert seed_plans(db) == 0

    recurring = db.query(SubscriptionPlan).filter(SubscriptionPlan.payment_type == "recurring").one()
    assert recurring.is_recurring() is True
    assert recurring.trial_days() == 1


def test_init_db_creates_tables(tmp_path):
    from sqlalchemy import create_engine, inspect

    from hirepath.db.init_db import init_db

    engine = create_engine(f"sqlite:///{tmp_path / 'init.db'}")
    init_db(bind=engine)

    tables = set(inspect(engine).get_table_names())
    assert {"subscriptions", "subscription_plans", "job_applications", "notifications"} <= tables
    engine.dispose()
