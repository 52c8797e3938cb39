import numpy as np
import pytest

from canscope.signal import SignalQualityError, differential, estimate_threshold, quartiles, recessive_levels


def test_differential():
    diff = differential([3.5, 2.5, 3.0], [1.5, 2.5, 2.0])
    assert diff.dtype == np.float32
    assert diff.tolist() == [2.0, 0.0, 1.0]


def test_differential_length_mismatch():
    with pytest.raises(ValueError):
        differential([1.0, 2.0], [1.0])


def test_quartile_ranks():
    # n=8: ranks ceil(8/4)=2 and ceil(24/4)=6
    diff = np.array([7, 3, 0, 5, 1, 6, 2, 4], dtype=np.float32)
    assert quartiles(diff) == (2.0, 6.0)
    assert estimate_threshold(diff) == 4.0

    # n=10: ranks ceil(2.5)=3 and ceil(7.5)=8
    diff = np.arange(10, dtype=np.float32)[::-1]
    assert quartiles(diff) == (3.0, 8.0)
    assert estimate_threshold(diff) == 5.5


def test_outliers_ignored():
    diff = np.array([0.0] * 10 + [2.0] * 10, dtype=np.float32)
    diff[0] = -5.0  # undershoot
    diff[-1] = 9.0  # overshoot
    assert estimate_threshold(diff) == 1.0


def test_small_iqr():
    diff = np.linspace(0.0, 0.5, 100, dtype=np.float32)
    with pytest.raises(SignalQualityError) as excinfo:
        estimate_threshold(diff)
    assert excinfo.value.iqr < 0.6


def test_flat_signal():
    with pytest.raises(SignalQualityError):
        estimate_threshold(np.zeros(1000, dtype=np.float32))


def test_too_short():
    with pytest.raises(SignalQualityError):
        estimate_threshold(np.array([0.0, 2.0, 2.0], dtype=np.float32))


def test_recessive_levels():
    diff = np.array([2.0, 0.1, 1.0, 0.99], dtype=np.float32)
    assert recessive_levels(diff, 1.0).tolist() == [False, True, False, True]
