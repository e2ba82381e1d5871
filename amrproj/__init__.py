# -*- encoding: utf-8 -*-

from amrproj.projection import (
    VARIABLE_CATALOGUE,
    AccumulatorBuffer,
    BinnedRecords,
    CoarseRemapper,
    DerivedVariableResolver,
    LevelBinner,
    MapResult,
    PixelGrid,
    ThreadScheduler,
    VariableInfo,
    VariableKind,
    WeightedAccumulator,
    build_pixel_grid,
    project,
    projection_log_callback,
    record_weights,
    remap,
)
from .constants import DEFAULT_GAMMA, BOX_CENTER_TOKENS, STANDARD_UNIT
from .coordinates import (
    Direction,
    CoordinateMapper,
    Footprints,
    parse_direction,
    direction_axes,
)
from .errors import (
    InvalidRequestError,
    UnknownUnitError,
    DerivedVariableError,
    RemapAlignmentError,
    EmptyResultWarning,
)
from .profiler import TimeProfiler, profile_list_to_speedscope
from .records import (
    CellRecord,
    ParticleRecord,
    RecordKind,
    RecordSet,
    CellRecords,
    ParticleRecords,
)
from .request import (
    ProjectionMode,
    PixelCount,
    PixelSize,
    FromDepth,
    ProjectionRequest,
    read_request_file,
)
from .units import UnitDimension, UnitScales
from .version import __author__, __version__

__all__ = [
    "__author__",
    "__version__",
    # constants.py
    "DEFAULT_GAMMA",
    "BOX_CENTER_TOKENS",
    "STANDARD_UNIT",
    # coordinates.py
    "Direction",
    "CoordinateMapper",
    "Footprints",
    "parse_direction",
    "direction_axes",
    # errors.py
    "InvalidRequestError",
    "UnknownUnitError",
    "DerivedVariableError",
    "RemapAlignmentError",
    "EmptyResultWarning",
    # profiler.py
    "TimeProfiler",
    "profile_list_to_speedscope",
    # records.py
    "CellRecord",
    "ParticleRecord",
    "RecordKind",
    "RecordSet",
    "CellRecords",
    "ParticleRecords",
    # request.py
    "ProjectionMode",
    "PixelCount",
    "PixelSize",
    "FromDepth",
    "ProjectionRequest",
    "read_request_file",
    # units.py
    "UnitDimension",
    "UnitScales",
    # projection
    "VARIABLE_CATALOGUE",
    "AccumulatorBuffer",
    "BinnedRecords",
    "CoarseRemapper",
    "DerivedVariableResolver",
    "LevelBinner",
    "MapResult",
    "PixelGrid",
    "ThreadScheduler",
    "VariableInfo",
    "VariableKind",
    "WeightedAccumulator",
    "build_pixel_grid",
    "project",
    "projection_log_callback",
    "record_weights",
    "remap",
]
