import pytest

from playbook_runner.errors import ConfigurationError, StateReferenceError
from playbook_runner.state import (
    deep_merge,
    get_key_value,
    has_key_value,
    init_state,
    normalize_initial_state,
    select_paths,
    set_key_value,
    split_path,
)


def test_split_path_handles_dots_and_indexes():
    assert split_path("$deployed.Token[0].address") == ["$deployed", "Token", "0", "address"]


def test_get_key_value_walks_mappings_and_lists():
    data = {"a": {"b": [{"c": 1}, {"c": 2}]}}
    assert get_key_value(data, "a.b[1].c") == 2
    assert get_key_value(data, "a.b.0.c") == 1
    assert has_key_value(data, "a.b[0]")
    assert not has_key_value(data, "a.b[5]")


def test_get_key_value_missing_path_raises_with_path():
    with pytest.raises(StateReferenceError) as exc:
        get_key_value({"$inputs": {}}, "$inputs.amount")
    assert exc.value.path == "$inputs.amount"


def test_get_key_value_default_and_stored_none():
    assert get_key_value({}, "a.b", None) is None
    assert get_key_value({"a": None}, "a") is None


def test_set_key_value_creates_intermediate_dicts():
    data = {}
    set_key_value(data, "$outputs.Token.balance", 10)
    assert data == {"$outputs": {"Token": {"balance": 10}}}

    set_key_value(data, "$outputs.Token.balance", 11)
    assert data["$outputs"]["Token"]["balance"] == 11


def test_deep_merge_replaces_lists_and_keeps_base_untouched():
    base = {"a": {"x": 1, "y": [1, 2]}, "b": 1}
    merged = deep_merge(base, {"a": {"y": [3]}, "c": 2})
    assert merged == {"a": {"x": 1, "y": [3]}, "b": 1, "c": 2}
    assert base["a"]["y"] == [1, 2]


def test_init_state_fills_reserved_keys():
    state = init_state({"$inputs": {"a": 1}})
    assert state["$inputs"] == {"a": 1}
    assert state["$outputs"] == {}
    assert state["$deployed"] == {}
    assert state["$contracts"] == {}
    assert state["commandIndex"] == 1
    assert state["commandCount"] == 0


def test_normalize_moves_loose_keys_into_inputs_in_place():
    seed = {"amount": 5, "$deployed": {"Token": {"address": "0x1"}}}
    state = normalize_initial_state(seed)
    assert state is seed
    assert state["$inputs"] == {"amount": 5}
    assert state["$deployed"] == {"Token": {"address": "0x1"}}
    assert "amount" not in state


def test_normalize_keeps_top_level_keys_when_inputs_given():
    state = normalize_initial_state({"$inputs": {"a": 1}, "extra": 2})
    assert state["$inputs"] == {"a": 1}
    assert state["extra"] == 2


def test_normalize_never_infers_deployed_from_plain_keys():
    state = normalize_initial_state({"Token": {"address": "0x1"}})
    assert state["$deployed"] == {}
    assert state["$inputs"] == {"Token": {"address": "0x1"}}


@pytest.mark.parametrize("key", ["$inputs", "$deployed", "$outputs"])
def test_normalize_rejects_non_mapping_reserved_keys(key):
    with pytest.raises(ConfigurationError):
        normalize_initial_state({key: [1, 2]})


def test_normalize_rejects_non_mapping_state():
    with pytest.raises(ConfigurationError):
        normalize_initial_state([1])


def test_select_paths_defaults_to_everything_but_contract_handles():
    state = init_state({"$inputs": {"a": 1}})
    state["$contracts"]["Token"] = object()
    snapshot = select_paths(state, None)
    assert "$contracts" not in snapshot
    assert snapshot["$inputs"] == {"a": 1}


def test_select_paths_picks_paths_and_fills_missing_with_none():
    state = init_state({"$deployed": {"Token": {"address": "0x1"}}})
    snapshot = select_paths(state, ["$deployed", "$outputs.missing"])
    assert snapshot == {"$deployed": {"Token": {"address": "0x1"}}, "$outputs": {"missing": None}}
