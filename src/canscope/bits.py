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
Clock recovery and bit destuffing.

Bits are recovered from the lengths of the runs between edges: the decoder never sees a clock, so
a run of k bit times is split into k bits of equal length.
"""
from collections import namedtuple
from math import ceil

import numpy as np

# Runs may be stretched by up to 4% before they are counted as an extra bit
JITTER_TOLERANCE = 0.04


class Bit(namedtuple('Bit', 'start end value')):
    """
    A logical bit on the bus. start and end are sample indices (end is exclusive) and value is the
    logical level: True is recessive ('1'), False is dominant ('0').
    """
    __slots__ = ()

    @property
    def dominant(self) -> bool:
        return not self.value

    def __str__(self):
        return "{},{},{}".format(self.start, self.end, '1' if self.value else '0')


def bits_in_run(num_samples: int, sample_period: float, bit_time: float) -> int:
    """
    Returns the number of bits represented by a run of identical samples
    """
    elapsed = num_samples * sample_period
    return max(1, int(ceil(elapsed / (bit_time * (1.0 + JITTER_TOLERANCE)))))


def split_run(start: int, end: int, value: bool, number_of_bits: int):
    """
    Splits the samples [start, end) into bits of equal length. The last bit absorbs the
    rounding remainder and ends exactly at the edge.
    """
    samples_per_bit = (end - start) // number_of_bits
    for _ in range(number_of_bits - 1):
        yield Bit(start, start + samples_per_bit, value)
        start += samples_per_bit
    yield Bit(start, end, value)


def extract_bits(levels, bit_time: float, sample_period: float, flush=True):
    """
    Generates the bits of a capture from its per-sample logic levels.

    :param levels: boolean array, True where the bus is recessive
    :param bit_time: nominal bit time in seconds
    :param sample_period: seconds per sample
    :param flush: if False the run after the last edge is never emitted, so decoding stops at
                  the last transition of the capture
    """
    levels = np.asarray(levels, dtype=bool)
    if len(levels) == 0:
        return
    if sample_period > bit_time:
        raise ValueError("Sample period {}s is longer than the bit time {}s".format(sample_period, bit_time))

    edges = (np.flatnonzero(levels[1:] != levels[:-1]) + 1).tolist()
    if flush:
        edges.append(len(levels))

    run_start = 0
    value = bool(levels[0])
    for edge in edges:
        number_of_bits = bits_in_run(edge - run_start, sample_period=sample_period, bit_time=bit_time)
        yield from split_run(run_start, edge, value, number_of_bits)
        run_start = edge
        value = not value


class BitDestuffer:
    """
    Removes stuff bits. Five identical bits in a row are followed by a stuff bit of the opposite
    value; a sixth identical bit is a stuff error. The stuff bit itself starts the next run.
    """
    DATA = 'data'
    STUFF = 'stuff'
    STUFF_ERROR = 'stuff-error'

    MAX_RUN = 5

    def __init__(self):
        self.count = 0  # type: int
        self.last = False  # type: bool

    def reset(self, count=0):
        self.count = count

    def feed(self, bit: Bit, stuffing: bool) -> str:
        """
        Classifies a bit received from the bus.

        :param bit: the received bit
        :param stuffing: True inside the stuffed part of a frame (SOF to the end of the CRC)
        :return: DATA if the bit is to be decoded, STUFF or STUFF_ERROR if it is to be dropped
        """
        if bit.value == self.last:
            self.count += 1
            if stuffing and self.count > self.MAX_RUN:
                return self.STUFF_ERROR
            return self.DATA

        stuffbit = stuffing and self.count == self.MAX_RUN
        self.count = 1
        self.last = bit.value
        return self.STUFF if stuffbit else self.DATA
