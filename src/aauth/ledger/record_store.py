"""aauth.ledger.record_store

Keyed record store the engine persists accounts into.

Records are addressed by a deterministic seed (see account_seed and
ACCOUNT_MANAGER_SEED). Every record holds a deposit equal to the rent
minimum for its size:
  - create charges the payer the full deposit
  - resize charges or refunds the difference
  - close zeroes the data and refunds the whole deposit to the beneficiary

Every operation validates first and mutates second: a refused request
(insufficient funds, size limit, unknown seed) leaves the store untouched.
transaction() groups several operations so they land together or not at all;
nested transactions join the outermost one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import ContextManager, Dict, Iterator, Tuple

from aauth.runtime.errors import NotFoundError, ResourceError

DEFAULT_MAX_RECORD_BYTES = 10 * 1024


@dataclass(frozen=True)
class RentPolicy:
    per_byte: int = 6960
    overhead_bytes: int = 128

    def minimum_balance(self, size: int) -> int:
        return (int(self.overhead_bytes) + int(size)) * int(self.per_byte)


class RecordStore(ABC):
    def __init__(self, *, rent: RentPolicy | None = None, max_record_bytes: int = DEFAULT_MAX_RECORD_BYTES) -> None:
        self.rent = rent or RentPolicy()
        self.max_record_bytes = int(max_record_bytes)

    def _check_size(self, seed: bytes, size: int) -> None:
        if size < 0 or size > self.max_record_bytes:
            raise ResourceError(
                "record_too_large",
                "record size exceeds limit",
                {"seed": seed.hex(), "size": size, "max": self.max_record_bytes},
            )

    @abstractmethod
    def transaction(self) -> ContextManager[None]:
        """Commit every operation inside the block together, or roll all of them back."""

    @abstractmethod
    def exists(self, seed: bytes) -> bool: ...

    @abstractmethod
    def read(self, seed: bytes) -> bytes: ...

    @abstractmethod
    def size(self, seed: bytes) -> int: ...

    @abstractmethod
    def create(self, seed: bytes, data: bytes, *, payer: str) -> None: ...

    @abstractmethod
    def write(self, seed: bytes, data: bytes) -> None:
        """Overwrite record data in place. data must fit the allocated size."""

    @abstractmethod
    def resize(self, seed: bytes, new_size: int, *, payer: str) -> None: ...

    @abstractmethod
    def close(self, seed: bytes, *, beneficiary: str) -> int:
        """Destroy the record; returns the refunded deposit."""

    @abstractmethod
    def balance(self, owner: str) -> int: ...

    @abstractmethod
    def fund(self, owner: str, amount: int) -> None: ...


class InMemoryRecordStore(RecordStore):
    def __init__(self, *, rent: RentPolicy | None = None, max_record_bytes: int = DEFAULT_MAX_RECORD_BYTES) -> None:
        super().__init__(rent=rent, max_record_bytes=max_record_bytes)
        self._records: Dict[bytes, Tuple[bytearray, int]] = {}
        self._balances: Dict[str, int] = {}
        self._in_tx = False

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._in_tx:
            yield
            return
        records = {seed: (bytearray(buf), deposit) for seed, (buf, deposit) in self._records.items()}
        balances = dict(self._balances)
        self._in_tx = True
        try:
            yield
        except BaseException:
            self._records = records
            self._balances = balances
            raise
        finally:
            self._in_tx = False

    def _get(self, seed: bytes) -> Tuple[bytearray, int]:
        rec = self._records.get(bytes(seed))
        if rec is None:
            raise NotFoundError("record_not_found", "no record at seed", {"seed": bytes(seed).hex()})
        return rec

    def exists(self, seed: bytes) -> bool:
        return bytes(seed) in self._records

    def read(self, seed: bytes) -> bytes:
        data, _ = self._get(seed)
        return bytes(data)

    def size(self, seed: bytes) -> int:
        data, _ = self._get(seed)
        return len(data)

    def create(self, seed: bytes, data: bytes, *, payer: str) -> None:
        seed = bytes(seed)
        if seed in self._records:
            raise ResourceError("record_exists", "record already exists", {"seed": seed.hex()})
        self._check_size(seed, len(data))
        deposit = self.rent.minimum_balance(len(data))
        if self.balance(payer) < deposit:
            raise ResourceError("insufficient_funds", "payer cannot cover deposit", {"payer": payer, "need": deposit})
        self._balances[payer] = self.balance(payer) - deposit
        self._records[seed] = (bytearray(data), deposit)

    def write(self, seed: bytes, data: bytes) -> None:
        buf, deposit = self._get(seed)
        if len(data) > len(buf):
            raise ResourceError(
                "record_too_small",
                "data does not fit allocated record",
                {"seed": bytes(seed).hex(), "size": len(buf), "need": len(data)},
            )
        # zero-pad the tail so stale bytes never survive a shrink
        self._records[bytes(seed)] = (bytearray(data) + bytearray(len(buf) - len(data)), deposit)

    def resize(self, seed: bytes, new_size: int, *, payer: str) -> None:
        buf, deposit = self._get(seed)
        self._check_size(bytes(seed), new_size)
        new_deposit = self.rent.minimum_balance(new_size)
        delta = new_deposit - deposit
        if delta > 0 and self.balance(payer) < delta:
            raise ResourceError("insufficient_funds", "payer cannot cover resize", {"payer": payer, "need": delta})
        self._balances[payer] = self.balance(payer) - delta
        if new_size >= len(buf):
            data = buf + bytearray(new_size - len(buf))
        else:
            data = buf[:new_size]
        self._records[bytes(seed)] = (data, new_deposit)

    def close(self, seed: bytes, *, beneficiary: str) -> int:
        buf, deposit = self._get(seed)
        buf[:] = bytes(len(buf))
        del self._records[bytes(seed)]
        self._balances[beneficiary] = self.balance(beneficiary) + deposit
        return deposit

    def balance(self, owner: str) -> int:
        return int(self._balances.get(owner, 0))

    def fund(self, owner: str, amount: int) -> None:
        if int(amount) < 0:
            raise ValueError("amount must be >= 0")
        self._balances[owner] = self.balance(owner) + int(amount)
