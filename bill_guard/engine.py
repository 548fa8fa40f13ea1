"""
Billing engine facade.

One object exposing every logical operation of the engine: cycle
lifecycle, bill admission, cancellation and skipping, payments, and the
read-only queries. The CLI and the keeper only talk to this class.
"""

from typing import List, Optional, Sequence

from bill_guard.config.loader import AppConfig
from bill_guard.core.allocation import AllocationSummary, AllocationValidator
from bill_guard.core.bills import BillManager
from bill_guard.core.clock import Clock, SystemClock
from bill_guard.core.context import EngineContext, EngineSettings
from bill_guard.core.cycles import CycleManager
from bill_guard.core.payments import PaymentProcessor, PaymentResult
from bill_guard.storage.funds import FundsGateway, LedgerFunds
from bill_guard.storage.models import Bill, BillDraft, Cycle, EventKind, LedgerEvent
from bill_guard.storage.repository import LedgerRepository, get_repository


class BillingEngine:
    """Operation surface over cycles, bills and payments."""

    def __init__(self, context: EngineContext):
        self.context = context
        self.cycles = CycleManager(context)
        self.bills = BillManager(context)
        self.payments = PaymentProcessor(context)
        self.allocations = AllocationValidator(context.repository)

    @property
    def settings(self) -> EngineSettings:
        return self.context.settings

    # Cycles

    def create_cycle(self, owner: str, duration_months: int, amount: int) -> int:
        return self.cycles.create_cycle(owner, duration_months, amount)

    def end_cycle(self, cycle_id: int, caller: str) -> int:
        return self.cycles.end_cycle(cycle_id, caller)

    def admin_end_cycle(self, cycle_id: int, caller: str) -> int:
        return self.cycles.admin_end_cycle(cycle_id, caller)

    def get_cycle(self, cycle_id: int) -> Cycle:
        return self.cycles.get_cycle(cycle_id)

    def get_user_cycles(self, owner: str) -> List[int]:
        return self.cycles.get_user_cycles(owner)

    def get_all_cycles(self, caller: str) -> List[int]:
        return self.cycles.get_all_cycles(caller)

    # Bills

    def add_bill(self, cycle_id: int, draft: BillDraft, caller: str) -> int:
        return self.bills.add_bill(cycle_id, draft, caller)

    def add_bills(self, cycle_id: int, drafts: Sequence[BillDraft], caller: str) -> List[int]:
        return self.bills.add_bills(cycle_id, drafts, caller)

    def cancel_bill(self, bill_id: int, caller: str) -> None:
        self.bills.cancel_bill(bill_id, caller)

    def cancel_bills(self, bill_ids: Sequence[int], caller: str) -> None:
        self.bills.cancel_bills(bill_ids, caller)

    def skip_bill(self, bill_id: int, caller: str) -> None:
        self.bills.skip_bill(bill_id, caller)

    def skip_bills(self, bill_ids: Sequence[int], caller: str) -> None:
        self.bills.skip_bills(bill_ids, caller)

    def get_bill(self, bill_id: int) -> Bill:
        return self.bills.get_bill(bill_id)

    def get_cycle_bills(self, cycle_id: int) -> List[int]:
        return self.bills.get_cycle_bills(cycle_id)

    def list_cycle_bills(self, cycle_id: int) -> List[Bill]:
        return self.bills.list_cycle_bills(cycle_id)

    # Payments

    def pay_bill(self, bill_id: int, caller: str) -> PaymentResult:
        return self.payments.pay_bill(bill_id, caller)

    def admin_pay_bill(self, bill_id: int, caller: str) -> PaymentResult:
        return self.payments.admin_pay_bill(bill_id, caller)

    # Allocation and audit

    def allocation(self, cycle_id: int) -> AllocationSummary:
        return self.allocations.summarize(cycle_id)

    def check_allocation(self, cycle_id: int, drafts: Sequence[BillDraft]) -> AllocationSummary:
        return self.allocations.validate(cycle_id, drafts)

    def events(
        self,
        cycle_id: Optional[int] = None,
        kind: Optional[EventKind] = None,
        limit: int = 100
    ) -> List[LedgerEvent]:
        return self.context.repository.fetch_events(cycle_id=cycle_id, kind=kind, limit=limit)


def build_engine(
    config: AppConfig,
    repository: Optional[LedgerRepository] = None,
    funds: Optional[FundsGateway] = None,
    clock: Optional[Clock] = None
) -> BillingEngine:
    """Wire a BillingEngine from configuration.

    Args:
        config: Loaded application configuration
        repository: Store to use instead of the shared one for ``config.storage.db_path``
        funds: Funds gateway to use instead of ledger-backed balances
        clock: Time source, defaults to the system clock

    Returns:
        A ready BillingEngine over an initialized store
    """
    if repository is None:
        repository = get_repository(config.storage.db_path)
    repository.initialize()

    context = EngineContext(
        settings=config.engine,
        repository=repository,
        funds=funds or LedgerFunds(repository),
        clock=clock or SystemClock()
    )
    return BillingEngine(context)
