"""Run playbooks of contract commands against a network.

A playbook is a list of steps. A step is one of:

* a command: ``{contract, run, at, inputs, outputs, description}``
* a loop: ``{for, each}`` (see :mod:`playbook_runner.command_loop`)
* a playbook reference: ``{playbook: path, inputs: {...}}``
* a nested list of steps

Steps run strictly one after another, depth first, against a single state
dict that every step reads and writes. The first failure stops the run;
results of the steps that completed stay in :attr:`Runner.ledger` and the
results file so the remaining work can be replayed.
"""
from __future__ import annotations

import logging
import pprint
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .abi_reader import AbiReader
from .command import Command
from .command_loop import CommandLoop, loop_step_count
from .config import NetworkConfig, RunnerOptions, load_environment
from .constants import (
    COMMAND_COUNT_KEY,
    COMMAND_INDEX_KEY,
    CONTRACTS_KEY,
    DEFAULT_MAPPING_FILE,
    INPUTS_KEY,
    NO_ARTIFACT_METHODS,
    UTIL_PREFIX,
)
from .errors import ConfigurationError, NotFoundError
from .gateway import CallGateway, ResourceScope, Web3Gateway
from .logging_utils import get_logger, log_section
from .mapping import OutputMapper
from .results import CommandResultHandler, Result, ResultLedger, get_results_logger, recording
from .script_reader import Playbook, ScriptReader
from .serialization import dumps, to_plain
from .state import deep_merge, init_state, normalize_initial_state, select_paths

Source = Union[str, Path, Mapping[str, Any], Sequence[Any], Playbook]


def get_transaction_hash(output: Any) -> Optional[str]:
    if not isinstance(output, Mapping):
        return None
    if output.get("tx"):
        return output["tx"]
    if output.get("transactionHash"):
        return output["transactionHash"]
    receipt = output.get("receipt")
    if isinstance(receipt, Mapping) and receipt.get("transactionHash"):
        return receipt["transactionHash"]
    return None


def describe_step(step: Any) -> str:
    if isinstance(step, Command):
        return step.message(decoration=False)
    if Command.is_command(step):
        summary = f"{step['contract']}.{step['run']}"
        return f"{step['description']} [{summary}]" if step.get("description") else summary
    if CommandLoop.is_command_loop(step):
        return CommandLoop(step).summary()
    if Command.is_file_playbook(step):
        return f"playbook {step['playbook']}"
    return "???"


class Runner:
    def __init__(
        self,
        options: Optional[Union[RunnerOptions, Mapping[str, Any]]] = None,
        *,
        gateway: Optional[CallGateway] = None,
        abi_reader: Optional[AbiReader] = None,
        script_reader: Optional[ScriptReader] = None,
        mapper: Optional[OutputMapper] = None,
        logger: Optional[logging.Logger] = None,
        confirm: Optional[Callable[[str], bool]] = None,
    ) -> None:
        if not isinstance(options, RunnerOptions):
            options = RunnerOptions.from_mapping(options)
        self.options = options

        load_environment(options.working_directory)
        self.network = NetworkConfig.from_env(options.network_name)
        self.logger = logger or get_logger(level=logging.DEBUG if options.debug else logging.INFO)

        self.gateway: CallGateway = gateway or Web3Gateway.from_network(self.network)
        self.abi_reader = abi_reader or AbiReader(options.contracts_dir, options.working_directory)
        self.script_reader = script_reader or ScriptReader(options.working_directory)
        self.mapper = mapper or self._build_mapper()
        self.confirm = confirm

        self.ledger = ResultLedger()
        self.result_handler = CommandResultHandler(options.result_dir, options.network_name)
        self.results_logger = get_results_logger()
        if options.dump_filename is None:
            options.dump_filename = self.result_handler.build_filename("json", "state")
        self.dump_paths: Optional[List[str]] = (
            list(options.dump_paths) if options.dump_paths is not None else None
        )
        self.state: Optional[Dict[str, Any]] = None

    def _build_mapper(self) -> OutputMapper:
        mapping = self.options.mapping
        if not mapping:
            return OutputMapper()
        if isinstance(mapping, Mapping):
            return OutputMapper.from_dict(mapping)
        if mapping == DEFAULT_MAPPING_FILE and not (self.options.working_directory / mapping).exists():
            return OutputMapper()
        return OutputMapper.from_dict(self.script_reader.merge(mapping))

    # ---- entry point ----
    def read(self, sources: Union[Source, Sequence[Source]], state: Optional[Mapping[str, Any]] = None) -> List[Any]:
        """Run every playbook found in ``sources`` in order; return one result list per playbook."""
        state = normalize_initial_state(state)
        self.state = state
        try:
            with recording(self.results_logger, self.result_handler):
                results = self._read(sources, state)
        except BaseException:
            self._finish(state, failed=True)
            raise
        self._finish(state, failed=False)
        return results

    def _read(self, sources: Union[Source, Sequence[Source]], state: Dict[str, Any]) -> List[Any]:
        playbooks = self.collect(sources)
        names = "\n".join(f"{i}. {playbook.name}" for i, playbook in enumerate(playbooks, 1))
        header = f"📚 Will run {len(playbooks)} playbooks:"
        log_section(self.logger, header, names)
        if self.confirm is not None and not self.confirm(f"{header}\n{names}"):
            self.logger.info("Cancelled before running any playbook.")
            return []

        results: List[Any] = []
        for playbook in playbooks:
            results.append(self.run_playbook(playbook, state))
        self.logger.info("📝 Results:\t%s", self.result_handler.filename)
        self.logger.info("🏁 Finished OK.")
        return results

    def _finish(self, state: Dict[str, Any], failed: bool) -> None:
        try:
            if self.options.dump:
                try:
                    self.dump_state(state)
                except (OSError, TypeError, ValueError):
                    # keep the error that stopped the run
                    if not failed:
                        raise
                    self.logger.exception("Could not dump state to %s", self.options.dump_filename)
        finally:
            self.close_on_finish()

    def run_playbook(self, playbook: Playbook, state: Dict[str, Any]) -> List[Any]:
        self.logger.info("▶️  Running:\t%s", playbook.name)
        self.results_logger.debug("--- Begin %s ---", playbook.name)
        try:
            result = self.run(playbook.steps, state)
        except Exception as exc:
            self.logger.error("FAILED:\t%s\n\t\t%s", playbook.name, exc, exc_info=True)
            raise
        finally:
            self.results_logger.debug("--- End %s ---", playbook.name)
        self.logger.info("✅ Ran OK:\t%s", playbook.name)
        return result

    def collect(self, sources: Union[Source, Sequence[Source]]) -> List[Playbook]:
        """Turn a mix of paths and inline steps into playbooks."""
        if isinstance(sources, (str, Path, Mapping, Playbook)):
            sources = [sources]
        playbooks: List[Playbook] = []
        for source in sources:
            if isinstance(source, Playbook):
                playbooks.append(source)
            elif isinstance(source, (str, Path)):
                playbooks.extend(self.script_reader.read(source))
            elif isinstance(source, (list, tuple)):
                playbooks.append(Playbook(f"{len(source)} inline scripts", list(source)))
            elif isinstance(source, Mapping):
                playbooks.append(Playbook(f"Inline script: {describe_step(source)}", [source]))
            else:
                raise ConfigurationError(f'Unexpected item: should be path or script "{source!r}"')
        return playbooks

    # ---- step interpreter ----
    def run(self, step: Any, state: Dict[str, Any]) -> Any:
        """Run one step against ``state``; nested calls share the same dict."""
        init_state(state)
        if isinstance(step, Playbook):
            step = step.steps
        if isinstance(step, (list, tuple)):
            return self.run_sequence(step, state)
        if isinstance(step, Command):
            return self.execute(step, state)
        if CommandLoop.is_command_loop(step):
            return self.run_loop(CommandLoop(step), state)
        if Command.is_file_playbook(step):
            return self.run_playbook_reference(step, state)
        return self.execute(Command(step), state)

    def run_sequence(self, steps: Sequence[Any], state: Dict[str, Any]) -> List[Any]:
        state[COMMAND_COUNT_KEY] = loop_step_count(steps, state)
        state[COMMAND_INDEX_KEY] = 1
        results: List[Any] = []
        for position, step in enumerate(steps):
            if position:
                self._pause()
            _collect(results, self.run(step, state))
        return results

    def run_loop(self, loop: CommandLoop, state: Dict[str, Any]) -> List[Any]:
        self.logger.debug("🔁 %s", loop.summary())
        results: List[Any] = []
        first = True
        for steps in loop.expand(state):
            for step in steps:
                if not first:
                    self._pause()
                first = False
                _collect(results, self.run(step, state))
        return results

    def run_playbook_reference(self, step: Mapping[str, Any], state: Dict[str, Any]) -> List[Any]:
        unknown = sorted(set(step) - {"playbook", "inputs", "description"})
        if unknown:
            raise ConfigurationError(f"Unexpected field(s) {', '.join(unknown)} in playbook step {dict(step)!r}")
        inputs = step.get("inputs")
        if inputs:
            if not isinstance(inputs, Mapping):
                raise ConfigurationError(f"Playbook inputs must be a mapping, got {type(inputs).__name__}")
            state[INPUTS_KEY] = deep_merge(state[INPUTS_KEY], inputs)

        results: List[Any] = []
        for playbook in self.script_reader.read(step["playbook"]):
            for child in playbook.steps:
                _collect(results, self.run(child, state))
        return results

    def _pause(self) -> None:
        if self.options.delay:
            time.sleep(self.options.delay)

    # ---- single command ----
    def execute(self, command: Command, state: Dict[str, Any]) -> Result:
        prefix = f"{state[COMMAND_INDEX_KEY]} of {state[COMMAND_COUNT_KEY]}"
        self.logger.info("%s\t%s", prefix, command.message(decoration=False))
        try:
            output = self._invoke(command, state)

            transaction_hash = get_transaction_hash(output)
            address = output.get("address") if isinstance(output, Mapping) else None
            # deployments only come back with a receipt, look up the full
            # transaction so callers get block details
            if command.run == "new" and transaction_hash:
                output = dict(output)
                output["transaction"] = self.gateway.get_transaction(transaction_hash)

            result = Result(
                command=command,
                output=output,
                transaction_hash=transaction_hash,
                address=address,
            )
            for path in command.write_outputs(result, state):
                if self.dump_paths is not None and path not in self.dump_paths:
                    self.dump_paths.append(path)
        except Exception as error:
            message = command.message()
            self.logger.error("%s %s FAILED\n\t\t%s", prefix, message, error, exc_info=True)
            self.results_logger.error(message, extra={"command": command, "error": error})
            raise

        self.ledger.append(result)
        message = self._success_message(command, result)
        self.logger.info("%s ✅ %s", prefix, message)
        self.results_logger.info(message, extra={"result": result})
        state[COMMAND_INDEX_KEY] += 1
        return result

    def _invoke(self, command: Command, state: Dict[str, Any]) -> Any:
        if command.is_util:
            return self.exec_util(command, state)

        contract_type = self.get_contract(command.contract, state)
        if command.is_static:
            target = contract_type
        else:
            target = self.gateway.contract_at(contract_type, command.resolve_at(state))

        abi = self.get_method_abi(command.contract, command.run)
        inputs = command.get_inputs(state)
        args = command.sort_inputs_using_abi(inputs, abi)
        if self.options.debug:
            self.logger.debug("Inputs: %s", pprint.pformat(args, depth=self.options.debug_inspect_depth))

        with ResourceScope(command.summary()) as scope:
            output = self.gateway.call(target, command.run, args, abi=abi, scope=scope)

        if self.options.debug:
            self.logger.debug("Outputs: %s", pprint.pformat(output, depth=self.options.debug_inspect_depth))
        return self.mapper.apply(command.run, Command.get_output_type_from_abi(abi), output)

    def _success_message(self, command: Command, result: Result) -> str:
        message = command.message()
        if command.run == "new":
            block = None
            if isinstance(result.output, Mapping):
                block = (result.output.get("transaction") or {}).get("blockNumber")
            return (
                f"{message} at {result.address}\n\t\t"
                f"(transaction: {result.transaction_hash}, blockNumber: {block})"
            )
        if result.transaction_hash:
            return f"{message}\n\t\t(transaction: {result.transaction_hash})"
        return message

    # ---- contracts and metadata ----
    def get_contract(self, contract_name: str, state: Optional[Dict[str, Any]] = None) -> Any:
        """Contract-level handle, created once per run and cached in ``$contracts``."""
        if state is None:
            state = self.state if self.state is not None else init_state({})
        contracts = state.setdefault(CONTRACTS_KEY, {})
        if contract_name in contracts:
            return contracts[contract_name]
        artifact = self.abi_reader.get_artifact(contract_name)
        handle = self.gateway.contract_type(contract_name, artifact)
        contracts[contract_name] = handle
        return handle

    def contract_at(self, contract_name: str, at: str, state: Optional[Dict[str, Any]] = None) -> Any:
        return self.gateway.contract_at(self.get_contract(contract_name, state), at)

    def get_method_abi(self, contract_name: str, method_name: str) -> Optional[Dict[str, Any]]:
        abi = self.abi_reader.find_method(contract_name, method_name)
        if abi is None and method_name not in NO_ARTIFACT_METHODS:
            raise NotFoundError(f"No artifact found for {contract_name}.{method_name}")
        return abi

    # ---- util.* commands ----
    def exec_util(self, command: Command, state: Dict[str, Any]) -> Any:
        name = command.run[len(UTIL_PREFIX):]
        handler = getattr(self, f"util_{name}", None)
        if handler is None:
            raise NotFoundError(f"No {command.run} exists.")
        inputs = command.get_inputs(state)
        args = list(inputs.values()) if isinstance(inputs, Mapping) else list(inputs)
        return handler(command.contract, command.resolve_at(state), state, *args)

    def util_map(self, contract_name: str, at: str, state: Dict[str, Any]) -> Dict[str, Any]:
        return self.map(contract_name, at, state)

    def map(self, contract_name: str, at: str, state: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Read every argument-free constant method and key it by its mapping rule."""
        target = self.contract_at(contract_name, at, state)
        values: Dict[str, Any] = {}
        for entry in self.abi_reader.constant_methods(contract_name):
            method = entry["name"]
            with ResourceScope(f"{contract_name}.{method}") as scope:
                raw = self.gateway.call(target, method, [], abi=entry, scope=scope)
            output_type = Command.get_output_type_from_abi(entry)
            values[self.mapper.key_for(method)] = self.mapper.apply(method, output_type, raw)
        return values

    # ---- finish ----
    def dump_state(self, state: Mapping[str, Any]) -> Path:
        filename = Path(self.options.dump_filename)
        snapshot = to_plain(select_paths(state, self.dump_paths))
        filename.parent.mkdir(parents=True, exist_ok=True)
        filename.write_text(dumps(snapshot), encoding="utf-8")
        self.logger.info("📝 State:\t%s", filename)
        return filename

    def close_on_finish(self) -> None:
        if self.options.close_on_finish:
            self.close()

    def close(self) -> None:
        self.gateway.close()


def _collect(results: List[Any], result: Any) -> None:
    if isinstance(result, list):
        results.extend(result)
    else:
        results.append(result)


__all__ = ["Runner", "describe_step", "get_transaction_hash"]
