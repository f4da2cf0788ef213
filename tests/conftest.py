import os
import sys
import tempfile

# Keep test logs out of the working tree
os.environ.setdefault("COLLEGEBOT_LOG_DIR", tempfile.mkdtemp(prefix="collegebot-test-logs-"))

# Ensure src is on path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest

from collegebot.events import EventCollector
from collegebot.tools.registry import ToolRegistry


@pytest.fixture
def collector():
    return EventCollector()


@pytest.fixture
def registry():
    """Registry with a `lookup` tool that always answers "42"."""
    reg = ToolRegistry()

    @reg.register_function("lookup", "Look something up", {"q": {"type": "string"}}, required=["q"])
    def lookup(params, context):
        return "42"

    return reg
