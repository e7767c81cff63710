"""Unit tests configuration file."""

import json
import os

import pytest

TESTS_DIR = os.path.dirname(os.path.realpath(__file__))


def pytest_configure(config):
    """Disable verbose output when running tests."""
    terminal = config.pluginmanager.getplugin("terminal")
    if terminal:
        terminal.TerminalReporter.showfspath = False


@pytest.fixture
def protocol_file():
    return os.path.join(TESTS_DIR, "compiler", "protocol.json")


@pytest.fixture
def protocol_tree(protocol_file):
    with open(protocol_file, encoding="utf-8") as f:
        return json.load(f)
