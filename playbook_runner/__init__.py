from __future__ import annotations

from .abi_reader import AbiReader, Artifact
from .command import Command
from .command_loop import CommandLoop
from .config import NetworkConfig, RunnerOptions
from .errors import (
    ConfigurationError,
    NotFoundError,
    PlaybookError,
    RemoteCallError,
    ResolutionError,
    StateReferenceError,
)
from .gateway import ContractType, ResourceScope, Web3Gateway
from .mapping import OutputMapper
from .results import Result, ResultLedger
from .runner import Runner
from .script_reader import Playbook, ScriptReader
