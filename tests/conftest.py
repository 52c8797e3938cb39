import pytest

from canframe import CANFrame
from waveforms import Capture


@pytest.fixture
def scenario_frame():
    return CANFrame(can_id=0x123, data=bytes([0xab, 0xcd]))


@pytest.fixture
def scenario_capture(scenario_frame):
    return Capture(scenario_frame)
