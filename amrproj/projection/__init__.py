from .common import PixelGrid, build_pixel_grid, select_records
from .binner import BinnedRecords, LevelBinner
from .accumulator import AccumulatorBuffer, WeightedAccumulator
from .derived import (
    VARIABLE_CATALOGUE,
    VariableInfo,
    VariableKind,
    DerivedVariableResolver,
)
from .scheduler import ThreadScheduler, TaskOutcome
from .remap import CoarseRemapper
from .engine import (
    MapResult,
    project,
    remap,
    projection_log_callback,
    record_weights,
)

__all__ = [
    # common.py
    "PixelGrid",
    "build_pixel_grid",
    "select_records",
    # binner.py
    "BinnedRecords",
    "LevelBinner",
    # accumulator.py
    "AccumulatorBuffer",
    "WeightedAccumulator",
    # derived.py
    "VARIABLE_CATALOGUE",
    "VariableInfo",
    "VariableKind",
    "DerivedVariableResolver",
    # scheduler.py
    "ThreadScheduler",
    "TaskOutcome",
    # remap.py
    "CoarseRemapper",
    # engine.py
    "MapResult",
    "project",
    "remap",
    "projection_log_callback",
    "record_weights",
]
