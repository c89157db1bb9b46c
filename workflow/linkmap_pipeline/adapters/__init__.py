from .asmap import ASMAP_ALIASES, MSTmapParameters
from .backcross import TestcrossCalls, split_marker_name, testcross_calls, verify_round_trip
from .carthagene import CarthaGeneCommands

__all__ = [
    "ASMAP_ALIASES",
    "MSTmapParameters",
    "TestcrossCalls",
    "split_marker_name",
    "testcross_calls",
    "verify_round_trip",
    "CarthaGeneCommands",
]
