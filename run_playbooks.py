#!/usr/bin/env python3
"""Thin wrapper to run contract playbooks and log their results.

Delegates argument parsing and execution to the ``playbook_runner``
package; see ``playbook_runner.cli`` for the available options.
"""

from __future__ import annotations

import sys

from playbook_runner.cli import main


if __name__ == "__main__":
    sys.exit(main())
