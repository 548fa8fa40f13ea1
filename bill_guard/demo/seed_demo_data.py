# bill_guard/demo/seed_demo_data.py

from bill_guard.config.loader import default_config
from bill_guard.core.money import to_subunits
from bill_guard.core.recurrence import first_occurrence
from bill_guard.core.bills import MIN_LEAD_TIME_SECONDS
from bill_guard.engine import build_engine
from bill_guard.storage.models import BillCategory, BillDraft

OWNER = "demo-user"

engine = build_engine(default_config("admin"))
engine.context.funds.credit(OWNER, to_subunits("1000"))

cycle_id = engine.create_cycle(OWNER, 3, to_subunits("1000"))
cycle = engine.get_cycle(cycle_id)
now = engine.context.now()


def due_on(day):
    due_date = first_occurrence(
        cycle.start_date, cycle.end_date, day, not_before=now + MIN_LEAD_TIME_SECONDS
    )
    if due_date is None:
        raise SystemExit(f"No day {day} of any month fits in cycle {cycle_id}")
    return due_date


drafts = [
    BillDraft(
        name="Rent",
        amount=to_subunits("100"),
        due_date=due_on(15),
        is_recurring=True,
        category=BillCategory.HOUSING
    ),
    BillDraft(
        name="Car insurance",
        amount=to_subunits("45.50"),
        due_date=due_on(20),
        category=BillCategory.INSURANCE
    )
]

summary = engine.check_allocation(cycle_id, drafts)
bill_ids = engine.add_bills(cycle_id, drafts, OWNER)

print(f"Demo cycle {cycle_id} created with bills {bill_ids}")
print(f"Remaining allocation: {summary.remaining}")
