from currency import CurrencyValue
from errors import AccountLocked, InsufficientFunds, InsufficientHeldFunds, Overflow
from models import AccountRow, ClientId


class ClientAccount:
    """
    Balance state machine for a single client.

    `available` is withdrawable, `held` is reserved by open disputes. Every
    operation computes all new balances before assigning any of them, so a
    failed operation leaves the account exactly as it was.
    """

    def __init__(self, client: ClientId):
        self.client = client
        self._available = CurrencyValue.zero()
        self._held = CurrencyValue.zero()
        self._locked = False

    @property
    def available(self) -> CurrencyValue:
        return self._available

    @property
    def held(self) -> CurrencyValue:
        return self._held

    @property
    def is_locked(self) -> bool:
        return self._locked

    def total(self) -> CurrencyValue:
        total = self._available.checked_add(self._held)
        if total is None:
            raise Overflow(f"Total balance of client {self.client} overflows")
        return total

    def lock(self) -> None:
        self._locked = True

    def deposit(self, amount: CurrencyValue) -> None:
        if self._locked:
            raise AccountLocked(f"Account {self.client} is locked")
        available = self._available.checked_add(amount)
        # total must stay representable while funds are held
        if available is None or available.checked_add(self._held) is None:
            raise Overflow(f"Deposit of {amount} overflows account {self.client}")
        self._available = available

    def withdraw(self, amount: CurrencyValue) -> None:
        if self._locked:
            raise AccountLocked(f"Account {self.client} is locked")
        if amount > self._available:
            raise InsufficientFunds(
                f"Withdrawal of {amount} exceeds available {self._available}"
            )
        available = self._available.checked_sub(amount)
        if available is None:
            raise Overflow(f"Withdrawal of {amount} underflows account {self.client}")
        self._available = available

    def hold(self, amount: CurrencyValue) -> None:
        """Move `amount` from available to held."""
        if self._locked:
            raise AccountLocked(f"Account {self.client} is locked")
        held = self._held.checked_add(amount)
        available = self._available.checked_sub(amount)
        if held is None or available is None:
            raise Overflow(f"Cannot hold {amount} on account {self.client}")
        self._held = held
        self._available = available

    def release(self, amount: CurrencyValue) -> None:
        """Move `amount` from held back to available."""
        if self._locked:
            raise AccountLocked(f"Account {self.client} is locked")
        held = self._take_held(amount)
        available = self._available.checked_add(amount)
        if available is None:
            raise Overflow(f"Cannot release {amount} on account {self.client}")
        self._held = held
        self._available = available

    def chargeback(self, amount: CurrencyValue) -> None:
        """Remove `amount` from held for good and lock the account. Allowed while locked."""
        self._held = self._take_held(amount)
        self.lock()

    def _take_held(self, amount: CurrencyValue) -> CurrencyValue:
        held = self._held.checked_sub(amount)
        if held is None:
            raise InsufficientHeldFunds(
                f"Cannot take {amount} from held {self._held} on account {self.client}"
            )
        return held

    def to_row(self) -> AccountRow:
        return AccountRow(
            client=self.client,
            available=self._available,
            held=self._held,
            total=self.total(),
            locked=self._locked,
        )

    def __repr__(self) -> str:
        return (
            f"ClientAccount(client={self.client}, available={self._available}, "
            f"held={self._held}, locked={self._locked})"
        )
