##
## This file is part of the canscope project.
##
## Copyright (C) 2020-2023 Canis Automotive Labs <info@canislabs.com>
##
## This program is free software; you can redistribute it and/or modify
## it under the terms of the GNU General Public License as published by
## the Free Software Foundation; either version 2 of the License, or
## (at your option) any later version.
##
## This program is distributed in the hope that it will be useful,
## but WITHOUT ANY WARRANTY; without even the implied warranty of
## MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
## GNU General Public License for more details.
##
## You should have received a copy of the GNU General Public License
## along with this program; if not, see <http://www.gnu.org/licenses/>.
##
"""
Analog front end: the differential bus voltage and the decision threshold.
"""
import logging
from math import ceil

import numpy as np

logger = logging.getLogger(__name__)

# A clean CAN HS signal swings about 2V between recessive and dominant
MIN_INTERQUARTILE_RANGE = 0.6


class SignalQualityError(ValueError):
    """
    The capture does not separate into two logic levels.
    """
    def __init__(self, message: str, iqr: float = None):
        super().__init__(message)
        self.iqr = iqr


def differential(can_h, can_l) -> np.ndarray:
    """
    Returns CAN_H - CAN_L for every sample as a single precision array.

    :param can_h: CAN_H voltage samples
    :param can_l: CAN_L voltage samples, same length as can_h
    """
    can_h = np.asarray(can_h, dtype=np.float32)
    can_l = np.asarray(can_l, dtype=np.float32)
    if can_h.ndim != 1 or can_l.ndim != 1:
        raise ValueError("CAN_H and CAN_L must be one dimensional")
    if len(can_h) != len(can_l):
        raise ValueError("CAN_H and CAN_L must have the same length ({} != {})".format(len(can_h), len(can_l)))
    diff = np.empty(len(can_h), dtype=np.float32)
    np.subtract(can_h, can_l, out=diff)
    return diff


def quartiles(diff: np.ndarray):
    """
    Lower and upper quartile of the differential signal. The ranks are ceil(n/4) and ceil(3n/4)
    of the sorted samples, so over/undershoot at the edges never ends up as a level.

    :return: (Q1, Q3)
    """
    n = len(diff)
    lower = ceil(n / 4)
    upper = ceil(3 * n / 4)
    if upper >= n:
        raise SignalQualityError("Capture too short to estimate levels ({} samples)".format(n))
    ordered = np.sort(diff)
    return float(ordered[lower]), float(ordered[upper])


def estimate_threshold(diff: np.ndarray) -> float:
    """
    Finds the threshold between the recessive and dominant levels half way across the
    interquartile range.

    :param diff: differential signal
    :return: the threshold voltage
    :raises SignalQualityError: if the interquartile range is below MIN_INTERQUARTILE_RANGE
    """
    q1, q3 = quartiles(diff)
    iqr = q3 - q1
    if iqr < MIN_INTERQUARTILE_RANGE:
        raise SignalQualityError("Interquartile range {:.3f}V too small to decode".format(iqr), iqr=iqr)
    threshold = q1 + iqr / 2
    logger.debug(f"Q1={q1:.3f}V Q3={q3:.3f}V IQR={iqr:.3f}V threshold={threshold:.3f}V")
    return threshold


def recessive_levels(diff: np.ndarray, threshold: float) -> np.ndarray:
    """
    Per-sample logic level: True (recessive, logical 1) where the differential voltage is below
    the threshold.
    """
    return diff < threshold
