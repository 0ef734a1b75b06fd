from __future__ import annotations

import numpy as np
import pytest

from compwa.kinematics.phasespace import (
    breakup_momentum,
    kallen,
    massless_phsp_volume,
    phsp_volume,
    two_body_phsp_volume,
)


def test_kallen_is_symmetric():
    assert kallen(25, 4, 1) == kallen(1, 25, 4) == kallen(4, 1, 25)


@pytest.mark.parametrize(
    ("mass", "m1", "m2", "expected"),
    [
        (2.0, 0.0, 0.0, 1.0),
        (3.0, 1.0, 1.0, 1.118034),
        (1.0, 0.5, 0.5, 0.0),
        (1.0, 0.7, 0.5, 0.0),
    ],
)
def test_breakup_momentum(mass: float, m1: float, m2: float, expected: float):
    assert breakup_momentum(mass**2, m1, m2) == pytest.approx(expected, abs=1e-6)


def test_two_body_phsp_volume_below_threshold():
    assert two_body_phsp_volume(1.0, 0.7, 0.5) == 0


class TestPhspVolume:
    @pytest.mark.parametrize("n_final_states", [2, 3, 4])
    def test_massless_final_states(self, n_final_states: int):
        mass = 3.0969
        volume = phsp_volume(mass, [0.0] * n_final_states)
        expected = massless_phsp_volume(mass, n_final_states)
        assert volume == pytest.approx(expected, rel=1e-6)

    def test_two_body(self):
        mass, m1, m2 = 3.0969, 0.1349768, 0.13957039
        q = float(breakup_momentum(mass**2, m1, m2))
        assert phsp_volume(mass, [m1, m2]) == pytest.approx(np.pi * q / mass)

    def test_volume_decreases_with_final_state_masses(self):
        massless = phsp_volume(3.0969, [0.0, 0.0, 0.0])
        massive = phsp_volume(3.0969, [0.0, 0.1349768, 0.1349768])
        assert 0 < massive < massless

    def test_closed_phase_space(self):
        assert phsp_volume(0.2, [0.1349768, 0.1349768]) == 0

    def test_too_few_final_states(self):
        with pytest.raises(ValueError, match="two or more"):
            phsp_volume(3.0969, [0.0])
