# -*- encoding: utf-8 -*-

import threading
from time import perf_counter
from typing import Any, Dict, List

from .version import __version__


class TimeProfiler:
    """A context manager measuring the time spent computing one variable

    The profiler records the name of the thread that entered the ``with``
    block, so that the timeline of a multi-threaded projection can be
    reconstructed afterwards. Any keyword argument is kept in the
    dictionary ``parameters``.
    """

    def __init__(self, name: str = "", **kwargs):
        self.name = name
        self.parameters = dict(kwargs)
        self.thread_name = None
        self.start = None
        self.end = None

    def __enter__(self):
        self.thread_name = threading.current_thread().name
        self.start = perf_counter()
        return self

    def __exit__(self, typ, value, traceback):
        self.end = perf_counter()

    def valid(self) -> bool:
        return self.start is not None and self.end is not None

    def elapsed_time_s(self) -> float:
        return self.end - self.start


def profile_list_to_speedscope(profile_list: List[TimeProfiler]) -> Dict[str, Any]:
    """
    Convert a list of :class:`.TimeProfiler` objects into a Speedscope file

    Each thread becomes a separate profile in the output, which can be saved
    as a JSON file and opened in the `Speedscope webapp
    <https://www.speedscope.app/>`_.
    """

    valid_profiles = [prof for prof in profile_list if prof.valid()]

    frame_names = sorted(set(prof.name for prof in valid_profiles))
    frame_name_to_index = dict(
        (name, index) for (index, name) in enumerate(frame_names)
    )
    thread_names = sorted(set(prof.thread_name for prof in valid_profiles))

    profiles = []
    for cur_thread in thread_names:
        thread_profiles = [p for p in valid_profiles if p.thread_name == cur_thread]

        events = []  # type: List[Dict[str, Any]]
        for prof in thread_profiles:
            cur_index = frame_name_to_index[prof.name]
            events.append({"type": "O", "frame": cur_index, "at": prof.start})
            events.append({"type": "C", "frame": cur_index, "at": prof.end})

        profiles.append(
            {
                "type": "evented",
                "name": cur_thread,
                "unit": "seconds",
                "startValue": min(p.start for p in thread_profiles),
                "endValue": max(p.end for p in thread_profiles),
                "events": sorted(events, key=lambda e: (e["at"], e["type"] == "O")),
            }
        )

    return {
        "$schema": "https://www.speedscope.app/file-format-schema.json",
        "exporter": f"amrproj@{__version__}",
        "shared": {
            "frames": [{"name": name} for name in frame_names],
        },
        "profiles": profiles,
    }
