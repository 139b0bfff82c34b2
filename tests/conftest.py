import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

# Ensure repository root is on sys.path for package imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from playbook_runner.abi_reader import AbiReader  # noqa: E402
from playbook_runner.errors import RemoteCallError  # noqa: E402
from playbook_runner.runner import Runner  # noqa: E402


def _fn(name, inputs=(), outputs=(), mutability="view"):
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t} for t in outputs],
    }


ARTIFACTS = {
    "C": {
        "abi": [
            _fn("double", [("n", "uint256")], ["uint256"]),
            _fn("boom", [], [], "nonpayable"),
        ],
        "bytecode": "0x6000",
    },
    "Ordered": {
        "abi": [_fn("f", [("a", "uint256"), ("b", "uint256"), ("c", "uint256")], ["uint256"])],
    },
    "MetaCoin": {
        "abi": [
            {"type": "constructor", "inputs": [{"name": "_supply", "type": "uint256"}]},
            _fn("sendCoin", [("receiver", "address"), ("amount", "uint256")], ["bool"], "nonpayable"),
            _fn("getBalance", [("addr", "address")], ["uint256"]),
            _fn("getBalanceInEth", [("addr", "address")], ["uint256"]),
            _fn("name", [], ["string"]),
            _fn("version", [], ["uint8"]),
        ],
        "bytecode": "0x6080",
    },
    "Plain": {
        # no explicit constructor
        "abi": [_fn("ping", [], ["bool"])],
        "bytecode": "0x6001",
    },
}


@dataclass
class FakeContractType:
    name: str
    artifact: Any


@dataclass
class FakeInstance:
    contract_type: FakeContractType
    address: str


@dataclass
class FakeGateway:
    """Records every call; handlers are keyed by "Contract.method"."""

    handlers: Dict[str, Callable[..., Any]] = field(default_factory=dict)
    calls: List[Tuple[str, Optional[str], str, List[Any]]] = field(default_factory=list)
    created_types: List[FakeContractType] = field(default_factory=list)
    released: List[Any] = field(default_factory=list)
    open_listener_on: Optional[str] = None
    closed: int = 0
    deployed: int = 0

    def contract_type(self, name, artifact):
        handle = FakeContractType(name, artifact)
        self.created_types.append(handle)
        return handle

    def contract_at(self, contract_type, address):
        return FakeInstance(contract_type, address)

    def call(self, target, method, args, abi=None, scope=None):
        if isinstance(target, FakeContractType):
            name, address = target.name, None
        else:
            name, address = target.contract_type.name, target.address
        self.calls.append((name, address, method, list(args)))

        if scope is not None and self.open_listener_on == f"{name}.{method}":
            scope.register(f"listener:{name}.{method}", self.released.append)

        if method == "new":
            self.deployed += 1
            address = "0x" + f"{self.deployed:040x}"
            tx = "0x" + f"{self.deployed:064x}"
            return {"address": address, "transactionHash": tx, "tx": tx, "receipt": {"status": 1}}

        handler = self.handlers.get(f"{name}.{method}")
        if handler is None:
            return None
        return handler(*args)

    def get_transaction(self, tx_hash):
        return {"hash": tx_hash, "blockNumber": 7}

    def close(self):
        self.closed += 1


def fail(message="execution reverted"):
    def handler(*args):
        raise RemoteCallError("call failed", reason=message)
    return handler


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def abi_reader(tmp_path):
    return AbiReader(working_directory=tmp_path, artifacts=ARTIFACTS)


@pytest.fixture
def make_runner(tmp_path, gateway, abi_reader):
    def factory(**options):
        opts = {"working_directory": tmp_path, "mapping": None}
        opts.update(options)
        return Runner(opts, gateway=gateway, abi_reader=abi_reader)
    return factory


@pytest.fixture
def runner(make_runner):
    return make_runner()
