"""Transaction data model and BCS codec for programmable transactions.

The bridge only ever builds and inspects version-1 transaction data whose
kind is a programmable transaction. Any other kind, and any command other
than a Move call, fails to decode with :class:`UnsupportedTransactionError`
so that callers cannot be handed a transaction they are unable to inspect.
"""

from __future__ import annotations

from dataclasses import dataclass

from ledger_bridge.chain.bcs import BCSError, Reader, Writer
from ledger_bridge.chain.crypto import address_from_bytes, address_to_bytes


class UnsupportedTransactionError(BCSError):
    """The bytes encode a variant the bridge refuses to handle."""

    def __init__(self, message: str, *, kind: str) -> None:
        super().__init__(message)
        self.kind = kind


# ---------------------------------------------------------------------------
# Object references and call arguments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ObjectRef:
    object_id: str
    version: int
    digest: bytes

    def encode(self, w: Writer) -> None:
        w.address(address_to_bytes(self.object_id)).u64(self.version).bytes(self.digest)

    @classmethod
    def decode(cls, r: Reader) -> ObjectRef:
        return cls(address_from_bytes(r.address()), r.u64(), r.bytes())


@dataclass(frozen=True)
class SharedObject:
    object_id: str
    initial_shared_version: int
    mutable: bool


@dataclass(frozen=True)
class CallArg:
    """``pure`` carries BCS bytes; ``object`` one of the object variants."""

    pure: bytes | None = None
    owned: ObjectRef | None = None
    shared: SharedObject | None = None
    receiving: ObjectRef | None = None

    def encode(self, w: Writer) -> None:
        if self.pure is not None:
            w.u8(0).bytes(self.pure)
        elif self.owned is not None:
            w.u8(1).u8(0)
            self.owned.encode(w)
        elif self.shared is not None:
            w.u8(1).u8(1).address(address_to_bytes(self.shared.object_id))
            w.u64(self.shared.initial_shared_version).bool(self.shared.mutable)
        elif self.receiving is not None:
            w.u8(1).u8(2)
            self.receiving.encode(w)
        else:
            raise BCSError("empty call argument")

    @classmethod
    def decode(cls, r: Reader) -> CallArg:
        tag = r.u8()
        if tag == 0:
            return cls(pure=r.bytes())
        if tag != 1:
            raise UnsupportedTransactionError(f"unsupported call argument {tag}", kind="input")
        obj_tag = r.u8()
        if obj_tag == 0:
            return cls(owned=ObjectRef.decode(r))
        if obj_tag == 1:
            shared = SharedObject(address_from_bytes(r.address()), r.u64(), r.bool())
            return cls(shared=shared)
        if obj_tag == 2:
            return cls(receiving=ObjectRef.decode(r))
        raise UnsupportedTransactionError(f"unsupported object argument {obj_tag}", kind="input")


@dataclass(frozen=True)
class Argument:
    """``GasCoin``, ``Input(i)``, ``Result(i)`` or ``NestedResult(i, j)``."""

    kind: int
    index: int = 0
    sub_index: int = 0

    GAS_COIN = 0
    INPUT = 1
    RESULT = 2
    NESTED_RESULT = 3

    def encode(self, w: Writer) -> None:
        w.u8(self.kind)
        if self.kind in (self.INPUT, self.RESULT):
            w.u16(self.index)
        elif self.kind == self.NESTED_RESULT:
            w.u16(self.index).u16(self.sub_index)

    @classmethod
    def decode(cls, r: Reader) -> Argument:
        kind = r.u8()
        if kind == cls.GAS_COIN:
            return cls(kind)
        if kind in (cls.INPUT, cls.RESULT):
            return cls(kind, r.u16())
        if kind == cls.NESTED_RESULT:
            return cls(kind, r.u16(), r.u16())
        raise BCSError(f"invalid argument tag {kind}")


# ---------------------------------------------------------------------------
# Type tags
# ---------------------------------------------------------------------------

_PRIMITIVE_TAGS = {0: "bool", 1: "u8", 2: "u64", 3: "u128", 4: "address", 5: "signer", 8: "u16", 9: "u32", 10: "u256"}
_VECTOR_TAG = 6
_STRUCT_TAG = 7


@dataclass(frozen=True)
class TypeTag:
    tag: int
    element: TypeTag | None = None
    address: str = ""
    module: str = ""
    name: str = ""
    type_params: tuple[TypeTag, ...] = ()

    def encode(self, w: Writer) -> None:
        w.u8(self.tag)
        if self.tag == _VECTOR_TAG:
            assert self.element is not None
            self.element.encode(w)
        elif self.tag == _STRUCT_TAG:
            w.address(address_to_bytes(self.address)).string(self.module).string(self.name)
            w.uleb128(len(self.type_params))
            for param in self.type_params:
                param.encode(w)

    @classmethod
    def decode(cls, r: Reader) -> TypeTag:
        tag = r.u8()
        if tag in _PRIMITIVE_TAGS:
            return cls(tag)
        if tag == _VECTOR_TAG:
            return cls(tag, element=cls.decode(r))
        if tag == _STRUCT_TAG:
            address = address_from_bytes(r.address())
            module = r.string()
            name = r.string()
            params = tuple(cls.decode(r) for _ in range(r.uleb128()))
            return cls(tag, address=address, module=module, name=name, type_params=params)
        raise BCSError(f"invalid type tag {tag}")

    def __str__(self) -> str:
        if self.tag in _PRIMITIVE_TAGS:
            return _PRIMITIVE_TAGS[self.tag]
        if self.tag == _VECTOR_TAG:
            return f"vector<{self.element}>"
        base = f"{self.address}::{self.module}::{self.name}"
        if self.type_params:
            base += "<" + ", ".join(str(p) for p in self.type_params) + ">"
        return base


# ---------------------------------------------------------------------------
# Commands and transaction kinds
# ---------------------------------------------------------------------------

_COMMAND_NAMES = {
    0: "MoveCall",
    1: "TransferObjects",
    2: "SplitCoins",
    3: "MergeCoins",
    4: "Publish",
    5: "MakeMoveVec",
    6: "Upgrade",
}


@dataclass(frozen=True)
class MoveCall:
    package: str
    module: str
    function: str
    type_arguments: tuple[TypeTag, ...] = ()
    arguments: tuple[Argument, ...] = ()

    @property
    def target(self) -> str:
        return f"{self.package}::{self.module}::{self.function}"

    def encode(self, w: Writer) -> None:
        w.u8(0)
        w.address(address_to_bytes(self.package)).string(self.module).string(self.function)
        w.uleb128(len(self.type_arguments))
        for tag in self.type_arguments:
            tag.encode(w)
        w.uleb128(len(self.arguments))
        for arg in self.arguments:
            arg.encode(w)

    @classmethod
    def decode(cls, r: Reader) -> MoveCall:
        tag = r.u8()
        if tag != 0:
            name = _COMMAND_NAMES.get(tag, f"command {tag}")
            raise UnsupportedTransactionError(f"{name} is not a Move call", kind="command")
        package = address_from_bytes(r.address())
        module = r.string()
        function = r.string()
        type_arguments = tuple(TypeTag.decode(r) for _ in range(r.uleb128()))
        arguments = tuple(Argument.decode(r) for _ in range(r.uleb128()))
        return cls(package, module, function, type_arguments, arguments)


@dataclass(frozen=True)
class ProgrammableTransaction:
    inputs: tuple[CallArg, ...] = ()
    commands: tuple[MoveCall, ...] = ()

    def encode(self, w: Writer) -> None:
        w.u8(0)
        w.uleb128(len(self.inputs))
        for arg in self.inputs:
            arg.encode(w)
        w.uleb128(len(self.commands))
        for command in self.commands:
            command.encode(w)

    @classmethod
    def decode(cls, r: Reader) -> ProgrammableTransaction:
        kind = r.u8()
        if kind != 0:
            raise UnsupportedTransactionError(
                f"transaction kind {kind} is not a programmable transaction", kind="kind"
            )
        inputs = tuple(CallArg.decode(r) for _ in range(r.uleb128()))
        commands = tuple(MoveCall.decode(r) for _ in range(r.uleb128()))
        return cls(inputs, commands)

    def to_bytes(self) -> bytes:
        w = Writer()
        self.encode(w)
        return w.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> ProgrammableTransaction:
        r = Reader(data)
        value = cls.decode(r)
        r.expect_end()
        return value


# ---------------------------------------------------------------------------
# Transaction data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GasData:
    payment: tuple[ObjectRef, ...]
    owner: str
    price: int
    budget: int

    def encode(self, w: Writer) -> None:
        w.uleb128(len(self.payment))
        for ref in self.payment:
            ref.encode(w)
        w.address(address_to_bytes(self.owner)).u64(self.price).u64(self.budget)

    @classmethod
    def decode(cls, r: Reader) -> GasData:
        payment = tuple(ObjectRef.decode(r) for _ in range(r.uleb128()))
        return cls(payment, address_from_bytes(r.address()), r.u64(), r.u64())


@dataclass(frozen=True)
class TransactionData:
    kind: ProgrammableTransaction
    sender: str
    gas_data: GasData
    expiration_epoch: int | None = None

    def to_bytes(self) -> bytes:
        w = Writer()
        w.u8(0)  # V1
        self.kind.encode(w)
        w.address(address_to_bytes(self.sender))
        self.gas_data.encode(w)
        if self.expiration_epoch is None:
            w.u8(0)
        else:
            w.u8(1).u64(self.expiration_epoch)
        return w.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> TransactionData:
        r = Reader(data)
        version = r.u8()
        if version != 0:
            raise UnsupportedTransactionError(
                f"transaction data version {version} is not supported", kind="version"
            )
        kind = ProgrammableTransaction.decode(r)
        sender = address_from_bytes(r.address())
        gas_data = GasData.decode(r)
        expiration_tag = r.u8()
        if expiration_tag == 0:
            expiration = None
        elif expiration_tag == 1:
            expiration = r.u64()
        else:
            raise UnsupportedTransactionError(
                f"expiration variant {expiration_tag} is not supported", kind="expiration"
            )
        r.expect_end()
        return cls(kind, sender, gas_data, expiration)
