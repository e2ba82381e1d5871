# -*- encoding: utf-8 -*-

import numpy as np
import pytest

import amrproj


@pytest.fixture
def rng():
    return np.random.default_rng(seed=20231104)


@pytest.fixture
def square_cells():
    """Four cells at level 1 forming a 2×2 square in the plane z = 0.25"""
    return amrproj.CellRecords(
        level=[1, 1, 1, 1],
        cx=[1, 2, 1, 2],
        cy=[1, 1, 2, 2],
        cz=[1, 1, 1, 1],
        fields={
            "rho": np.ones(4),
            "vx": np.array([1.0, 2.0, 3.0, 4.0]),
            "vy": np.zeros(4),
            "vz": np.zeros(4),
        },
    )


@pytest.fixture
def layer_cells(rng):
    """Cells at levels 6, 7, and 8, all lying in the lowest layer of their level"""
    levels, cx, cy = [], [], []
    for level in (6, 7, 8):
        num = 300
        levels.append(np.full(num, level))
        cx.append(rng.integers(1, 2**level + 1, size=num))
        cy.append(rng.integers(1, 2**level + 1, size=num))

    levels = np.concatenate(levels)
    num = len(levels)
    return amrproj.CellRecords(
        level=levels,
        cx=np.concatenate(cx),
        cy=np.concatenate(cy),
        cz=np.ones(num, dtype=int),
        fields={
            "rho": rng.uniform(0.5, 2.0, size=num),
            "vx": rng.normal(size=num),
            "vy": rng.normal(size=num),
            "vz": rng.normal(size=num),
            "p": rng.uniform(0.1, 1.0, size=num),
        },
    )


@pytest.fixture
def particles(rng):
    num = 500
    return amrproj.ParticleRecords(
        x=rng.uniform(0.0, 1.0, size=num),
        y=rng.uniform(0.0, 1.0, size=num),
        z=rng.uniform(0.0, 1.0, size=num),
        fields={
            "mass": rng.uniform(1.0, 3.0, size=num),
            "vx": rng.normal(size=num),
            "vy": rng.normal(size=num),
            "vz": rng.normal(size=num),
        },
    )
