"""Call gateway: turns resolved commands into web3 calls and transactions."""
from __future__ import annotations

import inspect
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_account import Account
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError, Web3Exception

from .abi_reader import Artifact, LinkReferences
from .config import NetworkConfig
from .errors import ConfigurationError, NotFoundError, RemoteCallError
from .serialization import to_plain

logger = logging.getLogger("playbook_runner.gateway")

_ERROR_SELECTOR = "08c379a0"  # Error(string)
_PANIC_SELECTOR = "4e487b71"  # Panic(uint256)
_UNLINKED_PLACEHOLDER = re.compile(r"__[$A-Za-z0-9_:./-]{36}__")


class ResourceScope:
    """Tracks resources opened while a single call is in flight.

    The gateway registers anything it opens (event filters, subscriptions,
    timers) together with a release callback; leaving the scope releases
    whatever is still registered, newest first. Plain HTTP calls through
    :class:`Web3Gateway` open nothing, so their scopes stay empty.
    """

    def __init__(self, label: str = "") -> None:
        self.label = label
        self._resources: List[Tuple[Any, Callable[[Any], None]]] = []

    def register(self, resource: Any, release: Callable[[Any], None]) -> Any:
        self._resources.append((resource, release))
        return resource

    def unregister(self, resource: Any) -> None:
        self._resources = [(res, rel) for res, rel in self._resources if res is not resource]

    def __len__(self) -> int:
        return len(self._resources)

    def release(self) -> int:
        released = 0
        while self._resources:
            resource, release = self._resources.pop()
            try:
                release(resource)
                released += 1
            except Exception:  # pylint: disable=broad-except
                logger.warning("Could not release %r opened by %s", resource, self.label, exc_info=True)
        return released

    def __enter__(self) -> "ResourceScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        released = self.release()
        if released:
            logger.debug("Released %d dangling resource(s) after %s", released, self.label)


@dataclass
class ContractType:
    """Contract-level handle: ABI plus (linkable) creation bytecode."""

    name: str
    abi: List[Dict[str, Any]]
    bytecode: Optional[str] = None
    link_references: LinkReferences = field(default_factory=dict)
    links: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_artifact(cls, artifact: Artifact) -> "ContractType":
        return cls(
            name=artifact.name,
            abi=artifact.abi,
            bytecode=artifact.bytecode,
            link_references=artifact.link_references,
        )

    def link(self, library: str, address: str) -> None:
        if not self.bytecode:
            raise ConfigurationError(f"{self.name} has no bytecode to link {library} into")
        self.bytecode = link_bytecode(self.bytecode, self.link_references, library, address)
        self.links[library] = address

    @property
    def is_linked(self) -> bool:
        return not (self.bytecode and _UNLINKED_PLACEHOLDER.search(self.bytecode))


class CallGateway(Protocol):
    def contract_type(self, name: str, artifact: Artifact) -> Any:
        ...

    def contract_at(self, contract_type: Any, address: str) -> Any:
        ...

    def call(
        self,
        target: Any,
        method: str,
        args: Sequence[Any],
        abi: Optional[Mapping[str, Any]] = None,
        scope: Optional[ResourceScope] = None,
    ) -> Any:
        ...

    def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        ...

    def close(self) -> None:
        ...


def link_bytecode(bytecode: str, link_references: LinkReferences, library: str, address: str) -> str:
    """Replace every placeholder for ``library`` in ``bytecode`` with ``address``.

    Uses the compiler's ``linkReferences`` offsets when available, otherwise
    the legacy ``__Library_____`` placeholder (40 characters).
    """
    if not Web3.is_address(address):
        raise ConfigurationError(f"Cannot link {library}: {address!r} is not an address")
    target = address.lower().removeprefix("0x")
    code = bytecode.removeprefix("0x")

    replaced = False
    for libraries in link_references.values():
        for offset in libraries.get(library, []):
            start = int(offset["start"]) * 2
            length = int(offset["length"]) * 2
            code = code[:start] + target + code[start + length :]
            replaced = True

    if not replaced:
        placeholder = f"__{library}".ljust(40, "_")[:40]
        if placeholder in code:
            code = code.replace(placeholder, target)
            replaced = True

    if not replaced:
        raise NotFoundError(f"Bytecode has no link reference to library {library}")
    return "0x" + code


def decode_revert_data(data_hex: Optional[str]) -> Optional[str]:
    """Decode ``Error(string)`` and ``Panic(uint256)`` revert payloads."""
    if not data_hex or not isinstance(data_hex, str) or not data_hex.startswith("0x"):
        return None
    try:
        data = bytes.fromhex(data_hex[2:])
    except ValueError:
        return None
    if len(data) < 4:
        return None
    selector = data[:4].hex()
    try:
        if selector == _ERROR_SELECTOR:
            (message,) = abi_decode(["string"], data[4:])
            return message
        if selector == _PANIC_SELECTOR:
            (code,) = abi_decode(["uint256"], data[4:])
            return f"Panic(0x{code:02x})"
    except Exception:  # pylint: disable=broad-except
        return f"{selector}(malformed)"
    return None


def reason_from_exception(exc: BaseException) -> Optional[str]:
    data_hex = getattr(exc, "data", None)
    if data_hex is None and exc.args:
        arg0 = exc.args[0]
        if isinstance(arg0, dict):
            data_hex = arg0.get("data")
    decoded = decode_revert_data(data_hex if isinstance(data_hex, str) else None)
    if decoded:
        return decoded

    message = getattr(exc, "message", None) or str(exc)
    if message in {
        "execution reverted",
        "execution reverted: no data",
        "('execution reverted', 'no data')",
    }:
        return None
    if "revert reason:" in message:
        return message.split("revert reason:", 1)[1].strip()
    if "execution reverted:" in message:
        return message.split("execution reverted:", 1)[1].strip()
    return message or None


def format_receipt(receipt: Any) -> Dict[str, Any]:
    if receipt is None:
        return {"status": "pending"}
    tx_hash = receipt.get("transactionHash")
    return {
        "transactionHash": to_plain(tx_hash) if tx_hash is not None else None,
        "status": receipt.get("status"),
        "blockNumber": receipt.get("blockNumber"),
        "gasUsed": receipt.get("gasUsed"),
        "cumulativeGasUsed": receipt.get("cumulativeGasUsed"),
        "contractAddress": receipt.get("contractAddress"),
        "logs": to_plain(receipt.get("logs") or []),
    }


def _is_constant(abi: Optional[Mapping[str, Any]]) -> bool:
    if not abi:
        return False
    return abi.get("stateMutability") in ("view", "pure") or bool(abi.get("constant"))


class Web3Gateway:
    def __init__(self, w3: Web3, network: Optional[NetworkConfig] = None) -> None:
        self.w3 = w3
        self.network = network or NetworkConfig()
        self._nonces: Dict[str, int] = {}
        self._sender: Optional[str] = None

    @classmethod
    def from_network(cls, network: NetworkConfig) -> "Web3Gateway":
        if network.rpc_url.endswith(".ipc"):
            provider = Web3.IPCProvider(network.rpc_url)
        else:
            provider = Web3.HTTPProvider(network.rpc_url)
        return cls(Web3(provider), network)

    @property
    def sender(self) -> str:
        if self._sender:
            return self._sender
        if self.network.private_key:
            self._sender = Account.from_key(self.network.private_key).address
            return self._sender
        default = self.w3.eth.default_account
        if isinstance(default, str) and Web3.is_address(default):
            self._sender = default
            return default
        accounts = self.w3.eth.accounts
        if not accounts:
            raise ConfigurationError(
                f"No {self.network.name} account available: set PRIVATE_KEY or unlock an account on the node"
            )
        self._sender = accounts[0]
        return self._sender

    def contract_type(self, name: str, artifact: Artifact) -> ContractType:
        return ContractType.from_artifact(artifact)

    def contract_at(self, contract_type: ContractType, address: str) -> Contract:
        try:
            checksum = Web3.to_checksum_address(address)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid address for {contract_type.name}: {address!r}") from exc
        return self.w3.eth.contract(address=checksum, abi=contract_type.abi)

    def call(
        self,
        target: Any,
        method: str,
        args: Sequence[Any],
        abi: Optional[Mapping[str, Any]] = None,
        scope: Optional[ResourceScope] = None,
    ) -> Any:
        if isinstance(target, ContractType):
            if method == "new":
                return self.deploy(target, args)
            if method == "link":
                return self.link(target, args)
            raise NotFoundError(f"{method} cannot be called on the contract type {target.name}")

        function = getattr(target.functions, method, None)
        if function is None:
            raise NotFoundError(f"No method {method} found on contract at {target.address}")
        bound = function(*args)
        abi = abi or getattr(bound, "abi", None)
        try:
            if _is_constant(abi):
                return bound.call()
            return self._transact(bound, f"{method}")
        except (ContractLogicError, Web3Exception, ValueError) as exc:
            raise RemoteCallError(f"{method} failed", reason=reason_from_exception(exc)) from exc

    def deploy(self, contract_type: ContractType, args: Sequence[Any]) -> Dict[str, Any]:
        if not contract_type.bytecode:
            raise ConfigurationError(f"{contract_type.name} has no bytecode; is it an interface?")
        if not contract_type.is_linked:
            raise ConfigurationError(f"{contract_type.name} has unlinked libraries; run 'link' first")
        factory = self.w3.eth.contract(abi=contract_type.abi, bytecode=contract_type.bytecode)
        try:
            output = self._transact(factory.constructor(*args), f"{contract_type.name}.new")
        except (ContractLogicError, Web3Exception, ValueError) as exc:
            raise RemoteCallError(
                f"Deploying {contract_type.name} failed", reason=reason_from_exception(exc)
            ) from exc
        output["address"] = output["receipt"].get("contractAddress")
        output["transactionHash"] = output["tx"]
        return output

    def link(self, contract_type: ContractType, args: Sequence[Any]) -> Dict[str, str]:
        if len(args) != 2:
            raise ConfigurationError(
                f"link expects a library name and an address, got {len(args)} input(s)"
            )
        library, address = args
        if isinstance(address, Mapping):
            address = address.get("address")
        contract_type.link(str(library), str(address))
        return {"library": str(library), "address": str(address)}

    def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        try:
            return to_plain(self.w3.eth.get_transaction(tx_hash))
        except (Web3Exception, ValueError) as exc:
            raise RemoteCallError(f"Could not fetch transaction {tx_hash}") from exc

    def close(self) -> None:
        provider = self.w3.provider
        for name in ("disconnect", "close"):
            closer = getattr(provider, name, None)
            if callable(closer) and not inspect.iscoroutinefunction(closer):
                closer()
                logger.debug("Closed %s provider", self.network.name)
                return

    # ---- transactions ----
    def _transact(self, bound: Any, label: str) -> Dict[str, Any]:
        sender = self.sender
        params: Dict[str, Any] = {"from": sender}
        if self.network.gas_limit:
            params["gas"] = self.network.gas_limit

        if self.network.private_key:
            params.update(self.fee_params())
            params["nonce"] = self.next_nonce(sender)
            params["chainId"] = self.w3.eth.chain_id
            tx = bound.build_transaction(params)
            tx_hash = self.sign_and_send(tx)
        else:
            tx = params
            tx_hash = bound.transact(params)

        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        formatted = format_receipt(receipt)
        hash_hex = to_plain(tx_hash)
        if formatted.get("status") not in (1, True):
            reason = self._extract_revert_reason(tx, receipt)
            raise RemoteCallError(f"{label} reverted", tx_hash=hash_hex, reason=reason)
        return {"tx": hash_hex, "receipt": formatted}

    def supports_eip1559(self) -> bool:
        try:
            latest = self.w3.eth.get_block("latest")
            return "baseFeePerGas" in latest and latest["baseFeePerGas"] is not None
        except (Web3Exception, ValueError, KeyError):
            return False

    def fee_params(self) -> Dict[str, int]:
        """Return fee params for tx: EIP-1559 when supported; otherwise legacy gasPrice."""
        gas_price_gwei = self.network.gas_price_gwei
        if self.supports_eip1559():
            try:
                base = int(self.w3.eth.get_block("latest")["baseFeePerGas"])  # wei
            except (Web3Exception, ValueError, KeyError):
                base = Web3.to_wei(int(gas_price_gwei), "gwei") // 2
            prio = Web3.to_wei(int(self.network.priority_fee_gwei), "gwei")
            max_fee = base * 2 + prio
            if self.network.max_fee_gwei:
                max_fee = Web3.to_wei(int(self.network.max_fee_gwei), "gwei")
            return {"maxFeePerGas": max_fee, "maxPriorityFeePerGas": prio}
        return {"gasPrice": Web3.to_wei(int(gas_price_gwei), "gwei")}

    def next_nonce(self, addr: str) -> int:
        """Pending nonce, bumped past the last one handed out by this gateway."""
        try:
            pending = self.w3.eth.get_transaction_count(addr, "pending")
        except (Web3Exception, ValueError):
            pending = self.w3.eth.get_transaction_count(addr)
        key = addr.lower()
        last = self._nonces.get(key)
        if last is not None and pending <= last:
            pending = last + 1
        self._nonces[key] = pending
        return pending

    def sign_and_send(self, tx: Dict[str, Any]) -> Any:
        signed = self.w3.eth.account.sign_transaction(tx, private_key=self.network.private_key)
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        if raw_tx is None:
            raise RemoteCallError("Signed transaction missing raw_transaction/rawTransaction")
        return self.w3.eth.send_raw_transaction(raw_tx)

    def _extract_revert_reason(self, tx: Dict[str, Any], receipt: Any) -> Optional[str]:
        block_number = receipt.get("blockNumber")
        if block_number is None:
            return None
        call_tx = {
            key: value
            for key, value in tx.items()
            if key not in ("nonce", "gas", "gasPrice", "maxFeePerGas", "maxPriorityFeePerGas", "chainId")
        }
        call_tx.setdefault("to", receipt.get("to"))
        try:
            self.w3.eth.call(call_tx, block_identifier=block_number)
        except (ContractLogicError, Web3Exception, ValueError) as exc:  # expected: call raises with revert data
            return reason_from_exception(exc)
        return None


__all__ = [
    "CallGateway",
    "ContractType",
    "ResourceScope",
    "Web3Gateway",
    "decode_revert_data",
    "format_receipt",
    "link_bytecode",
    "reason_from_exception",
]
