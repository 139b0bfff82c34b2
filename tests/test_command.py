import pytest

from playbook_runner.command import Command, escape_value, is_reference, resolve_value
from playbook_runner.errors import ConfigurationError, ResolutionError, StateReferenceError
from playbook_runner.results import Result
from playbook_runner.state import init_state

ORDERED_ABI = {
    "type": "function",
    "name": "f",
    "inputs": [
        {"name": "a", "type": "uint256"},
        {"name": "b", "type": "uint256"},
        {"name": "c", "type": "uint256"},
    ],
    "outputs": [{"name": "", "type": "uint256"}],
}


def _command(**fields):
    step = {"contract": "Ordered", "run": "f"}
    step.update(fields)
    return Command(step)


def test_command_requires_contract_and_run():
    with pytest.raises(ConfigurationError):
        Command({"contract": "C"})
    with pytest.raises(ConfigurationError):
        Command({"run": "double"})


def test_command_rejects_unknown_fields():
    with pytest.raises(ConfigurationError):
        Command({"contract": "C", "run": "double", "input": [1]})


def test_scalar_inputs_become_single_argument():
    assert _command(inputs=7).get_inputs({}) == [7]


def test_is_reference():
    assert is_reference("$inputs.amount")
    assert is_reference("$item")
    assert is_reference("$deployed.Token[0]")
    assert not is_reference("pay $inputs.amount")
    assert not is_reference("$")
    assert not is_reference(5)


def test_resolve_value_is_recursive():
    state = init_state({"$inputs": {"a": 1, "b": [2, 3]}})
    value = {"x": "$inputs.a", "y": ["$inputs.b", "plain"], "z": 4}
    assert resolve_value(value, state) == {"x": 1, "y": [[2, 3], "plain"], "z": 4}


def test_escaped_reference_is_kept_literally():
    state = init_state({"$inputs": {"a": 1}})
    assert resolve_value("\\$inputs.a", state) == "$inputs.a"


def test_named_inputs_are_put_in_abi_order():
    state = init_state({"$inputs": {"x": 3}})
    command = _command(inputs={"c": "$inputs.x", "a": 1, "b": 2})
    assert command.sort_inputs_using_abi(command.get_inputs(state), ORDERED_ABI) == [1, 2, 3]


def test_list_of_mappings_is_merged_into_named_inputs():
    command = _command(inputs=[{"c": 3}, {"a": 1}, {"b": 2}])
    assert command.has_named_inputs
    assert command.sort_inputs_using_abi(command.get_inputs({}), ORDERED_ABI) == [1, 2, 3]


def test_named_inputs_match_ignoring_leading_underscores():
    abi = {"inputs": [{"name": "_supply", "type": "uint256"}, {"name": "owner", "type": "address"}]}
    command = Command({"contract": "Token", "run": "new", "inputs": {"supply": 10, "_owner": "0x1"}})
    assert command.sort_inputs_using_abi(command.get_inputs({}), abi) == [10, "0x1"]


def test_unknown_named_input_raises():
    command = _command(inputs={"a": 1, "b": 2, "d": 3})
    with pytest.raises(ResolutionError):
        command.sort_inputs_using_abi(command.get_inputs({}), ORDERED_ABI)


def test_missing_named_input_raises():
    command = _command(inputs={"a": 1, "b": 2})
    with pytest.raises(ResolutionError):
        command.sort_inputs_using_abi(command.get_inputs({}), ORDERED_ABI)


def test_same_parameter_given_twice_raises():
    command = _command(inputs={"a": 1, "_a": 1, "b": 2, "c": 3})
    with pytest.raises(ResolutionError):
        command.sort_inputs_using_abi(command.get_inputs({}), ORDERED_ABI)


def test_positional_inputs_pass_through():
    command = _command(inputs=[3, 2, 1])
    assert command.sort_inputs_using_abi(command.get_inputs({}), ORDERED_ABI) == [3, 2, 1]


def test_named_inputs_without_abi_keep_written_order():
    command = _command(inputs={"c": 3, "a": 1})
    assert command.sort_inputs_using_abi(command.get_inputs({}), None) == [3, 1]


def test_unresolved_input_reference_raises():
    with pytest.raises(StateReferenceError):
        _command(inputs={"a": "$inputs.nope"}).get_inputs(init_state({}))


def test_resolve_at_defaults_to_deployed_address():
    state = init_state({"$deployed": {"Ordered": {"address": "0xabc"}}})
    command = _command()
    assert command.resolve_at(state) == "0xabc"
    assert command.resolved_at == "0xabc"


def test_resolve_at_unwraps_deployment_record():
    state = init_state({"$deployed": {"Other": {"address": "0xdef", "blockNumber": 1}}})
    assert _command(at="$deployed.Other").resolve_at(state) == "0xdef"


def test_resolve_at_rejects_non_address():
    state = init_state({"$inputs": {"n": 5}})
    with pytest.raises(ConfigurationError):
        _command(at="$inputs.n").resolve_at(state)


def test_get_output_type_from_abi():
    assert Command.get_output_type_from_abi(ORDERED_ABI) == "uint256"
    assert Command.get_output_type_from_abi({"outputs": [{"type": "uint8"}, {"type": "bool"}]}) == "tuple"
    assert Command.get_output_type_from_abi(None) is None


def test_write_outputs_default_path():
    state = init_state({})
    command = _command()
    assert command.write_outputs(Result(command=command, output=6), state) == []
    assert state["$outputs"]["Ordered"]["f"] == 6


def test_write_outputs_to_named_path():
    state = init_state({})
    command = _command(outputs="total")
    assert command.write_outputs(Result(command=command, output=6), state) == ["$outputs.total"]
    assert state["$outputs"]["total"] == 6

    command = _command(outputs="$deployed.Ordered.total")
    command.write_outputs(Result(command=command, output=7), state)
    assert state["$deployed"]["Ordered"]["total"] == 7


def test_write_outputs_mapping_selects_result_fields():
    state = init_state({})
    command = _command(outputs={"sent.tx": "transactionHash", "sent.value": "output.value"})
    result = Result(command=command, output={"value": 3}, transaction_hash="0xaa")
    command.write_outputs(result, state)
    assert state["$outputs"]["sent"] == {"tx": "0xaa", "value": 3}


def test_write_outputs_records_deployment():
    state = init_state({})
    command = Command({"contract": "Token", "run": "new"})
    output = {"address": "0x1", "transaction": {"blockNumber": 9}}
    result = Result(command=command, output=output, transaction_hash="0xbb", address="0x1")
    command.write_outputs(result, state)
    assert state["$deployed"]["Token"] == {"address": "0x1", "transactionHash": "0xbb", "blockNumber": 9}
    assert state["$outputs"] == {}


def test_message_uses_description():
    command = _command(description="Order things")
    assert command.message(decoration=False) == "Order things [Ordered.f]"
    assert Command({"contract": "T", "run": "new"}).message().startswith("📦")


def test_escape_value_round_trips_through_resolution():
    state = init_state({"$inputs": {"a": 1}})
    value = {"label": "$USD", "plain": "x", "nested": ["$inputs.a", "\\$EUR", 3]}
    escaped = escape_value(value)
    assert escaped["nested"][0] == "\\$inputs.a"
    assert resolve_value(escaped, state) == value
