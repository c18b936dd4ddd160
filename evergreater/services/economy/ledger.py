"""Resource ledger: the only place account fields and the shared counter change.

Each public operation is all-or-nothing. Compound mutations are expressed as
guarded statements (``UPDATE ... WHERE currency >= :cost``) so concurrent
requests against one account never interleave a read with another's write.
"""

import math
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from flask import current_app
from sqlalchemy import and_, case, select, tuple_, update
from sqlalchemy.exc import SQLAlchemyError

from evergreater.errors import InsufficientResource, TransientInfraError, ValidationError
from evergreater.models import Account, ACCOUNT_WIRE_FIELDS
from .counter import GlobalCounterStore


GRANTABLE_FIELDS = ('supplies', 'premium_currency')
# Compare-and-swap retries for generator purchases under contention
CAS_ATTEMPTS = 5


def generator_cost(generator_count: int) -> int:
    """Premium currency needed to buy the next generator."""
    return 2 * math.floor((generator_count + 1) ** 1.2)


def require_positive_int(value, what):
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValidationError(f'{what} must be a positive integer')
    return value


def normalize_grant(grant: Mapping[str, int]) -> Dict[str, int]:
    if not grant:
        raise ValidationError('Purchase must grant at least one resource')
    normalized = {}
    for name, amount in grant.items():
        if name not in GRANTABLE_FIELDS:
            raise ValidationError(f'Cannot grant {name}')
        normalized[name] = require_positive_int(amount, name)
    return normalized


@dataclass
class PrintResult:
    count: int
    supplies: int
    currency: int
    tickets_contributed: int


@dataclass
class TickResult:
    total_produced: int = 0
    per_account_produced: Dict[int, int] = field(default_factory=dict)
    # Counter value after the tick; None when nothing was produced
    counter: Optional[int] = None


class Ledger(ABC):
    """Guarded, all-or-nothing operations over accounts and the shared counter."""

    @abstractmethod
    def read_counter(self) -> int: ...

    @abstractmethod
    def snapshot(self, account_id: int) -> Dict[str, int]: ...

    @abstractmethod
    def consume_supply(self, account_id: int) -> int: ...

    @abstractmethod
    def credit_from_print(self, account_id: int, amount: int) -> Dict[str, int]: ...

    @abstractmethod
    def increment_global_counter(self, amount: int) -> int: ...

    @abstractmethod
    def spend_currency_for(self, account_id: int, cost: int, grant: Mapping[str, int]) -> Dict[str, int]: ...

    @abstractmethod
    def buy_generator(self, account_id: int) -> Dict[str, int]: ...

    @abstractmethod
    def print_ticket(self, account_id: int) -> PrintResult: ...

    @abstractmethod
    def run_aggregation_tick(self) -> TickResult: ...


class SqlLedger(Ledger):
    """Ledger backed by the SQLAlchemy session.

    Public operations commit on success and roll back on any failure.
    Operations called from inside another operation join its transaction.
    """

    def __init__(self, session):
        self.session = session
        self.counter = GlobalCounterStore(session)
        self._depth = 0

    @contextmanager
    def _atomic(self, operation):
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return
        self._depth = 1
        try:
            yield
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            current_app.logger.error(f"[ledger] operation={operation} backend failure: {exc}")
            raise TransientInfraError(operation) from exc
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._depth = 0

    def _fields(self, account_id, *names):
        row = self.session.execute(
            select(*[getattr(Account, n) for n in names]).where(Account.id == account_id)
        ).first()
        if row is None:
            raise ValidationError('Unknown account')
        return dict(zip(names, (int(v) for v in row)))

    def _guarded_update(self, account_id, guard, values, resource, message):
        result = self.session.execute(
            update(Account)
            .where(Account.id == account_id, *guard)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
        # Either the guard failed or the account does not exist
        self._fields(account_id, 'id')
        raise InsufficientResource(resource, message)

    def read_counter(self):
        return self.counter.read()

    def snapshot(self, account_id):
        return self._fields(account_id, *ACCOUNT_WIRE_FIELDS)

    def consume_supply(self, account_id):
        with self._atomic('consume_supply'):
            self._guarded_update(
                account_id,
                [Account.supplies > 0],
                {'supplies': Account.supplies - 1},
                'supplies',
                'Out of supplies',
            )
            return self._fields(account_id, 'supplies')['supplies']

    def credit_from_print(self, account_id, amount):
        require_positive_int(amount, 'amount')
        with self._atomic('credit_from_print'):
            self._guarded_update(
                account_id,
                [],
                {
                    'currency': Account.currency + amount,
                    'tickets_contributed': Account.tickets_contributed + amount,
                },
                'account',
                'Unknown account',
            )
            return self._fields(account_id, 'currency', 'tickets_contributed')

    def increment_global_counter(self, amount):
        with self._atomic('increment_global_counter'):
            return self.counter.increment_and_get(amount)

    def spend_currency_for(self, account_id, cost, grant):
        require_positive_int(cost, 'cost')
        grant = normalize_grant(grant)
        values = {'currency': Account.currency - cost}
        for name, amount in grant.items():
            values[name] = getattr(Account, name) + amount
        with self._atomic('spend_currency_for'):
            self._guarded_update(
                account_id,
                [Account.currency >= cost],
                values,
                'currency',
                'Insufficient money',
            )
            return self._fields(account_id, 'currency', *grant)

    def buy_generator(self, account_id):
        with self._atomic('buy_generator'):
            for _ in range(CAS_ATTEMPTS):
                observed = self._fields(account_id, 'generator_count', 'premium_currency')
                owned = observed['generator_count']
                cost = generator_cost(owned)
                if observed['premium_currency'] < cost:
                    raise InsufficientResource('premium_currency', 'Insufficient gold')
                result = self.session.execute(
                    update(Account)
                    .where(
                        Account.id == account_id,
                        Account.generator_count == owned,
                        Account.premium_currency >= cost,
                    )
                    .values(
                        premium_currency=Account.premium_currency - cost,
                        generator_count=Account.generator_count + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    return self._fields(account_id, 'premium_currency', 'generator_count')
            current_app.logger.warning(f"[ledger] buy_generator account={account_id} lost {CAS_ATTEMPTS} races")
            raise TransientInfraError('buy_generator')

    def print_ticket(self, account_id):
        with self._atomic('print_ticket'):
            supplies = self.consume_supply(account_id)
            credited = self.credit_from_print(account_id, 1)
            count = self.increment_global_counter(1)
            return PrintResult(
                count=count,
                supplies=supplies,
                currency=credited['currency'],
                tickets_contributed=credited['tickets_contributed'],
            )

    def run_aggregation_tick(self):
        for _ in range(CAS_ATTEMPTS):
            try:
                return self._apply_tick()
            except _StaleTick as stale:
                current_app.logger.info(
                    f"[ledger] run_aggregation_tick {stale.changed} account(s) changed since read, retrying"
                )
        current_app.logger.warning(f"[ledger] run_aggregation_tick lost {CAS_ATTEMPTS} races")
        raise TransientInfraError('run_aggregation_tick')

    def _apply_tick(self):
        eligible = and_(Account.generator_count > 0, Account.supplies > 0)
        with self._atomic('run_aggregation_tick'):
            # SQLite ignores FOR UPDATE, so the update below is also guarded
            # on every (generator_count, supplies) pair read here
            rows = self.session.execute(
                select(Account.id, Account.generator_count, Account.supplies)
                .where(eligible)
                .with_for_update()
            ).all()
            produced = {row.id: min(row.generator_count, row.supplies) for row in rows}
            total = sum(produced.values())
            if not total:
                return TickResult()

            # One set-wide statement; every SET expression sees the pre-update row
            amount = case(
                (Account.generator_count < Account.supplies, Account.generator_count),
                else_=Account.supplies,
            )
            observed = [(row.id, row.generator_count, row.supplies) for row in rows]
            result = self.session.execute(
                update(Account)
                .where(tuple_(Account.id, Account.generator_count, Account.supplies).in_(observed))
                .values(
                    supplies=Account.supplies - amount,
                    currency=Account.currency + amount,
                    tickets_contributed=Account.tickets_contributed + amount,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != len(observed):
                raise _StaleTick(len(observed) - result.rowcount)
            counter = self.counter.increment_and_get(total)
            return TickResult(total_produced=total, per_account_produced=produced, counter=counter)


class _StaleTick(Exception):
    """An eligible account changed between the tick's read and its update."""

    def __init__(self, changed):
        self.changed = changed
        super().__init__(f'{changed} account(s) changed')


def get_ledger():
    from evergreater import db
    return SqlLedger(db.session)
