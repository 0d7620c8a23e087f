import sys
from pathlib import Path
import pytest
from PyQt6.QtCore import QCoreApplication

from core.config import AppConfig
from state.params import Parameter
from state.plugin_state import PluginState

UNIQUE_ID = 0x506C5374  # 'PlSt'


@pytest.fixture(scope="module")
def app():
    return QCoreApplication.instance() or QCoreApplication(sys.argv)


@pytest.fixture
def make_state(app):
    """Factory for a PluginState with three 0..1 parameters at 0.0, 0.5, 1.0."""
    def _make(state_chunks: bool = True, codec=None) -> PluginState:
        config = AppConfig(path=Path("/nonexistent/plugstate/config.json"))
        config.state_chunks = state_chunks
        state = PluginState(UNIQUE_ID, codec=codec, config=config)
        state.add_parameter(Parameter("gain", 0.0, 0.0, 1.0))
        state.add_parameter(Parameter("mix", 0.5, 0.0, 1.0))
        state.add_parameter(Parameter("level", 1.0, 0.0, 1.0))
        return state
    return _make
