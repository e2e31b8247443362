from dataclasses import dataclass
from decimal import Decimal, DecimalException
from typing import List, Optional
import structlog

from models import AccountState, ApplyOutcome, FinalClientState, TransactionKind, TransactionRecord
from repositories import AccountRepository, get_account_repository

logger = structlog.get_logger()


@dataclass
class LaneStats:
    applied: int = 0
    skipped: int = 0
    ignored: int = 0

    def record(self, outcome: ApplyOutcome) -> None:
        if outcome is ApplyOutcome.applied:
            self.applied += 1
        elif outcome is ApplyOutcome.skipped:
            self.skipped += 1
        else:
            self.ignored += 1

    @property
    def total(self) -> int:
        return self.applied + self.skipped + self.ignored


class AccountStateEngine:
    """Applies transaction records, in arrival order, to the accounts of one lane.

    Invalid transactions (insufficient funds, unknown or duplicate ids, disputes
    that cannot be honoured, anything after a chargeback) are skipped without
    raising; the input is a historical log, not a request stream.
    """

    def __init__(self, account_repo: AccountRepository, lane: int = 0):
        self.account_repo = account_repo
        self.lane = lane
        self.stats = LaneStats()

    def apply(self, record: TransactionRecord) -> ApplyOutcome:
        """Apply one record and report what happened to it."""
        outcome = self._apply(record)
        self.stats.record(outcome)
        return outcome

    def _apply(self, record: TransactionRecord) -> ApplyOutcome:
        if record.kind is TransactionKind.unrecognized:
            return ApplyOutcome.ignored

        account = self.account_repo.get_or_create_account(record.client_id)

        # Accounts are looked up by the record's client, so a mismatch only
        # shows up if the repository is corrupted; skip rather than misapply.
        if account.locked or account.client_id != record.client_id:
            return ApplyOutcome.skipped

        try:
            applied = self._dispatch(account, record)
        except DecimalException:
            # Balances past the decimal context's range cannot be represented;
            # handlers assign only after every result is computed, so nothing changed.
            applied = False

        if not applied:
            logger.debug(
                "Transaction skipped",
                lane=self.lane,
                client_id=record.client_id,
                transaction_id=record.transaction_id,
                kind=record.kind.value
            )
            return ApplyOutcome.skipped
        return ApplyOutcome.applied

    def _dispatch(self, account: AccountState, record: TransactionRecord) -> bool:
        if record.kind is TransactionKind.deposit:
            return self._process_deposit(account, record)
        if record.kind is TransactionKind.withdrawal:
            return self._process_withdrawal(account, record)
        if record.kind is TransactionKind.dispute:
            return self._process_dispute(account, record.transaction_id)
        if record.kind is TransactionKind.resolve:
            return self._process_resolve(account, record.transaction_id)
        return self._process_chargeback(account, record.transaction_id)

    def finalize(self) -> List[FinalClientState]:
        """Snapshot every account owned by this engine."""
        logger.debug(
            "Lane finished",
            lane=self.lane,
            accounts=self.account_repo.get_accounts_count(),
            applied=self.stats.applied,
            skipped=self.stats.skipped,
            ignored=self.stats.ignored
        )
        return self.account_repo.snapshot_all()

    def _process_deposit(self, account: AccountState, record: TransactionRecord) -> bool:
        """Process deposit transaction."""
        if record.amount is None or record.transaction_id in account.ledger:
            return False

        account.available += record.amount
        account.ledger[record.transaction_id] = record.amount
        return True

    def _process_withdrawal(self, account: AccountState, record: TransactionRecord) -> bool:
        """Process withdrawal transaction."""
        if record.amount is None or record.transaction_id in account.ledger:
            return False
        if account.available < record.amount:
            return False

        account.available -= record.amount
        account.ledger[record.transaction_id] = -record.amount
        return True

    def _process_dispute(self, account: AccountState, transaction_id: int) -> bool:
        effect = self._effect_of(account, transaction_id)
        if effect is None or transaction_id in account.disputed:
            return False
        # The disputed funds may already have been spent by a later withdrawal;
        # such a dispute is erroneous and dropped.
        available = account.available - effect
        held = account.held + effect
        if account.available < abs(effect) or held < 0:
            return False

        account.available, account.held = available, held
        account.disputed.add(transaction_id)
        return True

    def _process_resolve(self, account: AccountState, transaction_id: int) -> bool:
        effect = self._disputed_effect(account, transaction_id)
        if effect is None:
            return False
        available = account.available + effect
        held = account.held - effect
        if held < 0 or available < 0:
            return False

        account.available, account.held = available, held
        account.disputed.discard(transaction_id)
        return True

    def _process_chargeback(self, account: AccountState, transaction_id: int) -> bool:
        effect = self._disputed_effect(account, transaction_id)
        if effect is None or account.held - effect < 0:
            return False

        account.held -= effect
        account.disputed.discard(transaction_id)
        account.locked = True
        return True

    @staticmethod
    def _effect_of(account: AccountState, transaction_id: int) -> Optional[Decimal]:
        return account.ledger.get(transaction_id)

    def _disputed_effect(self, account: AccountState, transaction_id: int) -> Optional[Decimal]:
        if transaction_id not in account.disputed:
            return None
        return self._effect_of(account, transaction_id)


# Factory function, one engine per lane
def get_account_state_engine(lane: int = 0, account_repo: Optional[AccountRepository] = None) -> AccountStateEngine:
    return AccountStateEngine(account_repo or get_account_repository(), lane)
