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
Decodes a capture file from the command line.

The capture is a CSV file (or a .npy array) with the columns CAN_H, CAN_L, or time, CAN_H, CAN_L.
"""
import argparse
import logging
import sys

import numpy as np

from .pd import Decoder

logger = logging.getLogger(__name__)


def load_capture(path: str, sample_period: float = None):
    """
    Loads a capture file.

    :param path: CSV or .npy file
    :param sample_period: seconds per sample, taken from the time column if None
    :return: (can_h, can_l, sample_period)
    """
    if path.endswith('.npy'):
        data = np.load(path)
    else:
        data = np.genfromtxt(path, delimiter=',', dtype=np.float64)
        if data.ndim == 2:
            # Header lines do not parse as numbers
            data = data[~np.isnan(data).any(axis=1)]
    if data.ndim != 2 or data.shape[1] not in (2, 3):
        raise ValueError("Expected 2 or 3 columns in '{}', got shape {}".format(path, data.shape))

    if data.shape[1] == 3:
        if sample_period is None:
            if len(data) < 2:
                raise ValueError("Need at least two samples to find the sample period")
            sample_period = float(data[1, 0] - data[0, 0])
        data = data[:, 1:]
    elif sample_period is None:
        raise ValueError("No time column in '{}': the sample period must be given".format(path))

    logger.debug(f"Loaded {len(data)} samples from {path}, sample period {sample_period}s")
    return data[:, 0], data[:, 1], sample_period


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog='canscope', description=__doc__,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('capture', help='CSV or .npy capture file')
    parser.add_argument('--baud', type=int, default=125000,
                        help='Bits per second (default: 125000)')
    parser.add_argument('--sample-period', type=float, default=None,
                        help='Seconds per sample (default: from the time column)')
    parser.add_argument('--bits', action='store_true', help='Also print every bit')
    parser.add_argument('--no-trailing-bits', action='store_true',
                        help='Stop decoding at the last edge of the capture')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    try:
        decoder = Decoder(baud=args.baud,
                          bits='Yes' if args.bits else 'No',
                          trailing_bits='No' if args.no_trailing_bits else 'Yes')
        can_h, can_l, sample_period = load_capture(args.capture, sample_period=args.sample_period)
        annotations = decoder.decode(can_h, can_l, sample_period)
    except (OSError, ValueError) as e:
        logger.error(str(e))
        return 1

    for annotation in annotations:
        print(annotation)
    return 0


if __name__ == '__main__':
    sys.exit(main())
