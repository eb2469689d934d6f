"""Named binding slots for a two-tensor engine.

The engine addresses its I/O tensors by slot index; the runner addresses them
by role.  ``BindingTable`` keeps both views together with the device address
currently attached to each slot.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Protocol

from trt_runner.enums import TensorRole
from trt_runner.errors import BindingCountError, UnknownTensorError

EXPECTED_BINDINGS = 2


class BindingSource(Protocol):
    def binding_count(self) -> int: ...

    def binding_index(self, name: str) -> int: ...

    def tensor_names(self) -> list[str]: ...

    def is_input(self, name: str) -> bool: ...


@dataclass
class BindingSlot:
    role: TensorRole
    name: str
    index: int
    nbytes: int
    device_ptr: int = 0

    @property
    def attached(self) -> bool:
        return self.device_ptr != 0


class BindingTable:
    def __init__(self, slots: dict[TensorRole, BindingSlot]) -> None:
        if len(slots) != EXPECTED_BINDINGS:
            raise BindingCountError(EXPECTED_BINDINGS, len(slots))
        missing = [role.value for role in TensorRole if role not in slots]
        if missing:
            raise UnknownTensorError(",".join(missing), "no slot for role")
        indices = sorted(slot.index for slot in slots.values())
        if indices != list(range(EXPECTED_BINDINGS)):
            raise UnknownTensorError(
                "/".join(slot.name for slot in slots.values()),
                f"slot indices {indices} do not cover 0..{EXPECTED_BINDINGS - 1}",
            )
        self._slots = dict(slots)

    @classmethod
    def resolve(
        cls,
        source: BindingSource,
        input_name: str,
        output_name: str,
        input_nbytes: int,
        output_nbytes: int,
    ) -> "BindingTable":
        """Check the binding count and map both tensor names to slots.

        Raises before anything is allocated, so a bad engine or a misspelled
        name never reaches the device.
        """
        count = int(source.binding_count())
        if count != EXPECTED_BINDINGS:
            raise BindingCountError(EXPECTED_BINDINGS, count)
        if input_name == output_name:
            raise UnknownTensorError(input_name, "input and output names are identical")

        slots: dict[TensorRole, BindingSlot] = {}
        for role, name, nbytes, want_input in (
            (TensorRole.INPUT, input_name, input_nbytes, True),
            (TensorRole.OUTPUT, output_name, output_nbytes, False),
        ):
            index = int(source.binding_index(name))
            if index < 0 or index >= count:
                raise UnknownTensorError(name, "not found in engine", source.tensor_names())
            if bool(source.is_input(name)) != want_input:
                expected = "an input" if want_input else "an output"
                raise UnknownTensorError(name, f"is not {expected} tensor", source.tensor_names())
            slots[role] = BindingSlot(role=role, name=name, index=index, nbytes=int(nbytes))
        return cls(slots)

    def __getitem__(self, role: TensorRole) -> BindingSlot:
        return self._slots[role]

    def __iter__(self) -> Iterator[BindingSlot]:
        return iter(sorted(self._slots.values(), key=lambda slot: slot.index))

    def __len__(self) -> int:
        return len(self._slots)

    def attach(self, role: TensorRole, device_ptr: int) -> None:
        self._slots[role].device_ptr = int(device_ptr)

    def detach(self, role: TensorRole) -> None:
        self._slots[role].device_ptr = 0

    def addresses(self) -> list[int]:
        """Device pointers ordered by slot index (the legacy bindings array)."""
        return [slot.device_ptr for slot in self]
