"""Declarative call shapes for read-only contract calls.

A ``CallShape`` maps a method to its argument and return types; an
``Interface`` groups shapes for one contract kind; a ``CallDescriptor`` is
one concrete call. Encoding and decoding are derived from the types, so
protocol programs never touch calldata directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Generator, Iterable, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address


@dataclass(frozen=True)
class CallShape:
    name: str
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode(self, args: Sequence[Any]) -> bytes:
        if len(args) != len(self.inputs):
            raise TypeError(f"{self.signature} takes {len(self.inputs)} arguments, got {len(args)}")
        return self.selector + abi_encode(list(self.inputs), list(args))

    def decode(self, output: bytes) -> Any:
        """Decode return data; a single return value is unwrapped."""
        values = abi_decode(list(self.outputs), bytes(output))
        return values[0] if len(values) == 1 else values


@dataclass(frozen=True)
class CallDescriptor:
    interface: str
    address: str
    shape: CallShape
    args: Tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", to_checksum_address(self.address))

    @property
    def name(self) -> str:
        return f"{self.interface}.{self.shape.name}"

    @property
    def calldata(self) -> bytes:
        return self.shape.encode(self.args)

    def decode(self, output: bytes) -> Any:
        return self.shape.decode(output)

    def __str__(self) -> str:
        return f"{self.name}@{self.address}"


# a protocol program yields calls, receives their decoded results and returns its output
Program = Generator["CallDescriptor", Any, Any]


class Interface:
    def __init__(self, name: str, shapes: Iterable[CallShape]):
        self.name = name
        self.shapes: Dict[str, CallShape] = {shape.name: shape for shape in shapes}

    def call(self, address: str, method: str, *args: Any) -> CallDescriptor:
        try:
            shape = self.shapes[method]
        except KeyError:
            raise AttributeError(f"{self.name} has no method {method}") from None
        return CallDescriptor(self.name, address, shape, tuple(args))


ERC20 = Interface(
    "IERC20",
    [
        CallShape("totalSupply", (), ("uint256",)),
        CallShape("balanceOf", ("address",), ("uint256",)),
    ],
)


def encode_path(tokens: Sequence[str], fees: Sequence[int]) -> bytes:
    """Uniswap V3 multi-hop path: token (20) | fee (3) | token (20) | ..."""
    if len(tokens) != len(fees) + 1:
        raise ValueError("a path needs exactly one more token than fee tiers")
    out = bytes.fromhex(to_checksum_address(tokens[0])[2:])
    for fee, token in zip(fees, tokens[1:]):
        out += fee.to_bytes(3, "big") + bytes.fromhex(to_checksum_address(token)[2:])
    return out
