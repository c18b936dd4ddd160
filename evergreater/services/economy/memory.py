import threading
from typing import Dict

from evergreater.errors import InsufficientResource, ValidationError
from evergreater.models import ACCOUNT_WIRE_FIELDS
from .ledger import (
    Ledger,
    PrintResult,
    TickResult,
    generator_cost,
    normalize_grant,
    require_positive_int,
)


class MemoryLedger(Ledger):
    """In-process ledger holding accounts in a dict behind one mutex.

    Satisfies the same atomicity contract as ``SqlLedger``: every guard is
    checked and every field written while the lock is held.
    """

    def __init__(self, counter=0):
        self._lock = threading.RLock()
        self._accounts: Dict[int, Dict[str, int]] = {}
        self._counter = counter
        self._next_id = 1

    def create_account(self, supplies=100, **fields) -> int:
        account = {name: 0 for name in ACCOUNT_WIRE_FIELDS}
        account['supplies'] = supplies
        for name, value in fields.items():
            if name not in account:
                raise ValidationError(f'Unknown account field {name}')
            account[name] = value
        if any(value < 0 for value in account.values()):
            raise ValidationError('Account fields cannot be negative')
        with self._lock:
            account_id = self._next_id
            self._next_id += 1
            self._accounts[account_id] = account
        return account_id

    def _account(self, account_id):
        try:
            return self._accounts[account_id]
        except KeyError:
            raise ValidationError('Unknown account') from None

    def read_counter(self):
        with self._lock:
            return self._counter

    def snapshot(self, account_id):
        with self._lock:
            return dict(self._account(account_id))

    def consume_supply(self, account_id):
        with self._lock:
            account = self._account(account_id)
            if account['supplies'] <= 0:
                raise InsufficientResource('supplies', 'Out of supplies')
            account['supplies'] -= 1
            return account['supplies']

    def credit_from_print(self, account_id, amount):
        require_positive_int(amount, 'amount')
        with self._lock:
            account = self._account(account_id)
            account['currency'] += amount
            account['tickets_contributed'] += amount
            return {'currency': account['currency'], 'tickets_contributed': account['tickets_contributed']}

    def increment_global_counter(self, amount):
        require_positive_int(amount, 'amount')
        with self._lock:
            self._counter += amount
            return self._counter

    def spend_currency_for(self, account_id, cost, grant):
        require_positive_int(cost, 'cost')
        grant = normalize_grant(grant)
        with self._lock:
            account = self._account(account_id)
            if account['currency'] < cost:
                raise InsufficientResource('currency', 'Insufficient money')
            account['currency'] -= cost
            for name, amount in grant.items():
                account[name] += amount
            result = {'currency': account['currency']}
            result.update({name: account[name] for name in grant})
            return result

    def buy_generator(self, account_id):
        with self._lock:
            account = self._account(account_id)
            cost = generator_cost(account['generator_count'])
            if account['premium_currency'] < cost:
                raise InsufficientResource('premium_currency', 'Insufficient gold')
            account['premium_currency'] -= cost
            account['generator_count'] += 1
            return {
                'premium_currency': account['premium_currency'],
                'generator_count': account['generator_count'],
            }

    def print_ticket(self, account_id):
        with self._lock:
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
        with self._lock:
            produced = {}
            for account_id, account in self._accounts.items():
                if account['generator_count'] > 0 and account['supplies'] > 0:
                    produced[account_id] = min(account['generator_count'], account['supplies'])
            total = sum(produced.values())
            if not total:
                return TickResult()
            for account_id, amount in produced.items():
                account = self._accounts[account_id]
                account['supplies'] -= amount
                account['currency'] += amount
                account['tickets_contributed'] += amount
            self._counter += total
            return TickResult(total_produced=total, per_account_produced=produced, counter=self._counter)
