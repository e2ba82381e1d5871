#!/usr/bin/env python3
# -*- encoding: utf-8 -*-

"""
This program measures how the time spent by "project" scales with the
number of variables computed at the same time.

Usage: projection_threads.py [NUM_OF_CELLS [MAX_CONCURRENCY]]

The timeline of each run is saved in a Speedscope file.
"""

import json
import sys
import time
from pathlib import Path

import numpy as np

# Add the `..` directory to PYTHONPATH, so that we can import "amrproj"
sys.path.append(str(Path(__file__).parent / ".."))

import amrproj  # noqa:E402

num_of_cells = int(sys.argv[1]) if len(sys.argv) >= 2 else 1_000_000
max_concurrency_list = (
    [int(sys.argv[2])] if len(sys.argv) >= 3 else [1, 2, 4, 8]
)

rng = np.random.default_rng(12345)
levels = rng.integers(6, 11, size=num_of_cells)
cells = amrproj.CellRecords(
    level=levels,
    cx=rng.integers(1, 2**levels + 1),
    cy=rng.integers(1, 2**levels + 1),
    cz=rng.integers(1, 2**levels + 1),
    fields={
        "rho": rng.uniform(0.1, 10.0, size=num_of_cells),
        "vx": rng.normal(size=num_of_cells),
        "vy": rng.normal(size=num_of_cells),
        "vz": rng.normal(size=num_of_cells),
        "p": rng.uniform(0.1, 1.0, size=num_of_cells),
    },
)

variables = ["sd", "vx", "vy", "vz", "v", "sigma", "cs", "T"]
reference = None

for max_concurrency in max_concurrency_list:
    request = amrproj.ProjectionRequest(
        variables=variables,
        max_concurrency=max_concurrency,
        resolution=amrproj.FromDepth(10),
        callback=lambda name, index, total: None,
    )

    start = time.perf_counter_ns()
    result = amrproj.project(cells, request)
    stop = time.perf_counter_ns()
    elapsed_time = (stop - start) * 1.0e-9

    print(
        "max_concurrency={}: {:.2f} s, {:.1e} cells/s, peak concurrency {}".format(
            max_concurrency,
            elapsed_time,
            num_of_cells * len(variables) / elapsed_time,
            result.peak_concurrency,
        )
    )

    if reference is None:
        reference = result
    else:
        for name in variables:
            np.testing.assert_allclose(
                result.maps[name], reference.maps[name], rtol=1e-9
            )

    speedscope_file = Path(f"projection_threads_{max_concurrency}.json")
    with speedscope_file.open("wt") as out_f:
        json.dump(amrproj.profile_list_to_speedscope(list(result.profile_data)), out_f)
    print(f'Timeline saved in "{speedscope_file}"')
