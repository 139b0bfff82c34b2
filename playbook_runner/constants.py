from __future__ import annotations

import re


DEFAULT_ENV_FILE = ".env"
DEFAULT_MAPPING_FILE = "mapping.py"
DEFAULT_NETWORK = "development"
DEFAULT_RPC_URL = "http://127.0.0.1:8545"

INPUTS_KEY = "$inputs"
OUTPUTS_KEY = "$outputs"
DEPLOYED_KEY = "$deployed"
CONTRACTS_KEY = "$contracts"
RESERVED_KEYS = (INPUTS_KEY, OUTPUTS_KEY, DEPLOYED_KEY, CONTRACTS_KEY)

COMMAND_INDEX_KEY = "commandIndex"
COMMAND_COUNT_KEY = "commandCount"

DEFAULT_DUMP_PATHS = (DEPLOYED_KEY,)

# A whole-string state reference such as "$inputs.amount" or "$item.address".
# A leading backslash ("\$literal") escapes the reference.
REFERENCE_PATTERN = re.compile(r"^\$[A-Za-z_][A-Za-z0-9_]*(?:[.\[]\S*)?$")
ESCAPED_REFERENCE_PREFIX = "\\$"

DEFAULT_LOOP_VARIABLE = "$item"
LOOP_SPEC_PATTERN = re.compile(r"^\s*\$?([A-Za-z_][A-Za-z0-9_]*)\s+in\s+(\S+)\s*$")

STATIC_METHODS = ("new", "link")
UTIL_PREFIX = "util."

# Methods that may run without a matching ABI entry, e.g. a contract that
# declares no explicit constructor still supports "new".
NO_ARTIFACT_METHODS = ("new", "link")

SCRIPT_SUFFIXES = (".yml", ".yaml", ".json")
INCLUDE_KEY = "$include"

ARTIFACT_SEARCH_DIRS = ("build/contracts", "out")


__all__ = [
    "DEFAULT_ENV_FILE",
    "DEFAULT_MAPPING_FILE",
    "DEFAULT_NETWORK",
    "DEFAULT_RPC_URL",
    "INPUTS_KEY",
    "OUTPUTS_KEY",
    "DEPLOYED_KEY",
    "CONTRACTS_KEY",
    "RESERVED_KEYS",
    "COMMAND_INDEX_KEY",
    "COMMAND_COUNT_KEY",
    "DEFAULT_DUMP_PATHS",
    "REFERENCE_PATTERN",
    "ESCAPED_REFERENCE_PREFIX",
    "DEFAULT_LOOP_VARIABLE",
    "LOOP_SPEC_PATTERN",
    "STATIC_METHODS",
    "UTIL_PREFIX",
    "NO_ARTIFACT_METHODS",
    "SCRIPT_SUFFIXES",
    "INCLUDE_KEY",
    "ARTIFACT_SEARCH_DIRS",
]
