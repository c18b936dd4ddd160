from sqlalchemy import select, update

from evergreater.errors import TransientInfraError, ValidationError
from evergreater.models import GlobalCounter, GLOBAL_COUNTER_ID


class GlobalCounterStore:
    """Read and atomically add to the shared ticket counter.

    The store never commits; callers own the transaction so the increment
    can share a boundary with account mutations.
    """

    def __init__(self, session):
        self.session = session

    def ensure_row(self) -> bool:
        """Create the singleton row with value 0. Returns True if it was created."""
        if self.session.get(GlobalCounter, GLOBAL_COUNTER_ID) is not None:
            return False
        self.session.add(GlobalCounter(id=GLOBAL_COUNTER_ID, value=0))
        self.session.flush()
        return True

    def read(self) -> int:
        value = self.session.execute(
            select(GlobalCounter.value).where(GlobalCounter.id == GLOBAL_COUNTER_ID)
        ).scalar_one_or_none()
        return int(value or 0)

    def increment_and_get(self, amount: int) -> int:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 1:
            raise ValidationError('Counter increments must be positive integers')
        result = self.session.execute(
            update(GlobalCounter)
            .where(GlobalCounter.id == GLOBAL_COUNTER_ID)
            .values(value=GlobalCounter.value + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TransientInfraError('increment_global_counter', 'Global counter is not initialized')
        return self.read()
