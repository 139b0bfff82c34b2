import json

import pytest
import yaml

from playbook_runner.errors import ConfigurationError, NotFoundError
from playbook_runner.script_reader import ScriptReader


@pytest.fixture
def reader(tmp_path):
    return ScriptReader(tmp_path)


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def test_read_yaml_playbook(reader, tmp_path):
    path = _write(tmp_path / "deploy.yml", "- contract: MetaCoin\n  run: new\n- contract: MetaCoin\n  run: name\n")
    (playbook,) = reader.read("deploy.yml")
    assert playbook.name == str(path)
    assert [step["run"] for step in playbook.steps] == ["new", "name"]
    assert len(playbook) == 2


def test_single_mapping_document_is_one_step(reader, tmp_path):
    _write(tmp_path / "one.json", json.dumps({"contract": "C", "run": "double", "inputs": [1]}))
    (playbook,) = reader.read("one.json")
    assert playbook.steps == [{"contract": "C", "run": "double", "inputs": [1]}]


def test_directory_is_read_recursively_in_order(reader, tmp_path):
    _write(tmp_path / "books" / "b.yml", "- {contract: C, run: b}\n")
    _write(tmp_path / "books" / "a.json", json.dumps([{"contract": "C", "run": "a"}]))
    _write(tmp_path / "books" / "nested" / "c.yaml", "- {contract: C, run: c}\n")
    _write(tmp_path / "books" / "notes.txt", "ignored")

    playbooks = reader.read("books")
    assert [p.steps[0]["run"] for p in playbooks] == ["a", "b", "c"]


def test_glob_pattern(reader, tmp_path):
    _write(tmp_path / "books" / "01-deploy.yml", "- {contract: C, run: new}\n")
    _write(tmp_path / "books" / "02-call.yml", "- {contract: C, run: double}\n")
    _write(tmp_path / "books" / "skip.json", "[]")

    assert [p.steps[0]["run"] for p in reader.read("books/*.yml")] == ["new", "double"]


def test_missing_file_is_not_found(reader):
    with pytest.raises(NotFoundError):
        reader.read("nope.yml")


def test_invalid_yaml_is_a_configuration_error(reader, tmp_path):
    _write(tmp_path / "bad.yml", "- contract: [unclosed\n")
    with pytest.raises(ConfigurationError):
        reader.read("bad.yml")


def test_results_file_replays_failed_commands(reader, tmp_path):
    results = {
        "network": "development",
        "succeeded": [{"command": {"contract": "C", "run": "new"}}],
        "failed": [{"contract": "C", "run": "boom", "description": "x", "error": "reverted"}],
    }
    _write(tmp_path / "run.results.yml", yaml.safe_dump(results))

    (playbook,) = reader.read("run.results.yml")
    assert playbook.steps == [{"contract": "C", "run": "boom", "description": "x"}]


def test_merge_later_files_win(reader, tmp_path):
    _write(tmp_path / "a.yml", "x: 1\nnested: {a: 1, b: 1}\n")
    _write(tmp_path / "b.json", json.dumps({"nested": {"b": 2}}))

    assert reader.merge(["a.yml", "b.json"]) == {"x": 1, "nested": {"a": 1, "b": 2}}


def test_merge_follows_includes(reader, tmp_path):
    _write(tmp_path / "shared" / "base.yml", "amount: 1\nreceiver: '0x1'\n")
    _write(tmp_path / "main.yml", "$include: shared/base.yml\namount: 2\n")

    assert reader.merge("main.yml") == {"amount": 2, "receiver": "0x1"}


def test_circular_include_is_rejected(reader, tmp_path):
    _write(tmp_path / "a.yml", "$include: b.yml\n")
    _write(tmp_path / "b.yml", "$include: a.yml\n")

    with pytest.raises(ConfigurationError):
        reader.merge("a.yml")


def test_merge_python_module(reader, tmp_path):
    _write(
        tmp_path / "mapping.py",
        "import json\n"
        "_private = 1\n"
        "types = {'uint8': int}\n"
        "mapping = {'name': {'key': 'tokenName'}}\n",
    )
    merged = reader.merge("mapping.py")
    assert merged == {"types": {"uint8": int}, "mapping": {"name": {"key": "tokenName"}}}
