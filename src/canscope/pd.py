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
CAN HS decoder working on the analog CAN_H and CAN_L voltages.
"""
import logging

from .annotation import AnnotationClass
from .bits import extract_bits
from .fields import FrameStateMachine
from .signal import SignalQualityError, differential, estimate_threshold, recessive_levels

logger = logging.getLogger(__name__)


class Decoder:
    id = 'can-hs'
    name = 'CAN HS'
    longname = 'CAN HS (differential CAN_H/CAN_L)'
    desc = 'Decodes CAN 2.0A/B frames with arbitration, data and errors from CAN_H and CAN_L voltages.'
    license = 'gplv2+'
    inputs = ['analog']
    outputs = ['can']
    tags = ['Automotive']
    channels = (
        {'id': 'can_h', 'name': 'CAN_H', 'desc': 'CAN_H voltage'},
        {'id': 'can_l', 'name': 'CAN_L', 'desc': 'CAN_L voltage'},
    )
    options = (
        {'id': 'baud', 'desc': 'Bits per second (baudrate)', 'default': 125000,
         'values': (125000, 250000, 500000, 1000000)},
        {'id': 'trailing-bits', 'desc': 'Decode the bits after the last edge', 'default': 'Yes', 'values': ('Yes', 'No')},
        {'id': 'bits', 'desc': 'Show individual bits', 'default': 'No', 'values': ('No', 'Yes')},
    )

    annotations = AnnotationClass.get_annotations()
    annotation_rows = (
        ('row-bits', "Bits", AnnotationClass.get_annotation_row(['bit', 'stuffbit'])),
        ('row-can-fields', "Fields", AnnotationClass.get_annotation_row(['sof',
                                                                         'can-id',
                                                                         'srr',
                                                                         'ide',
                                                                         'rtr',
                                                                         'r1',
                                                                         'r0',
                                                                         'dlc',
                                                                         'can-payload',
                                                                         'crc',
                                                                         'crc-delimiter',
                                                                         'ack',
                                                                         'ack-delimiter',
                                                                         'eof',
                                                                         'ifs'])),
        ('row-can-frames', "Frames", AnnotationClass.get_annotation_row(['can-frame', 'data'])),
        ('row-can-warning', "Errors", AnnotationClass.get_annotation_row(['stuff-error',
                                                                          'eof-error',
                                                                          'ifs-error',
                                                                          'crc-mismatch'])),
    )

    def __init__(self, **kwargs):
        self.options = self.parse_options(kwargs)
        self.bit_time = None  # type: float
        self.flush = None  # type: bool
        self.show_bits = None  # type: bool
        self.reset()

    @classmethod
    def parse_options(cls, kwargs) -> dict:
        """
        Fills in the defaults and checks the values of the options.

        :param kwargs: option values by id; underscores may be used in place of dashes
        :return: dictionary of every option id to its value
        """
        known = {option['id']: option for option in cls.options}
        options = {option_id: option['default'] for option_id, option in known.items()}
        for key, value in kwargs.items():
            option_id = key.replace('_', '-')
            if option_id not in known:
                raise ValueError("Unknown option '{}'".format(key))
            if option_id == 'baud':
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise ValueError("Baud rate '{}' is not a number".format(value))
            if value not in known[option_id]['values']:
                raise ValueError("Option '{}' must be one of {}, not {!r}".format(
                    option_id, ", ".join(str(v) for v in known[option_id]['values']), value))
            options[option_id] = value
        return options

    def reset(self):
        self.bit_time = 1.0 / self.options['baud']
        self.flush = self.options['trailing-bits'] == 'Yes'
        self.show_bits = self.options['bits'] == 'Yes'

    def decode(self, can_h, can_l, sample_period: float):
        """
        Decodes a complete capture.

        :param can_h: CAN_H voltage samples
        :param can_l: CAN_L voltage samples
        :param sample_period: seconds per sample
        :return: list of Annotation, in the order they were produced
        """
        if not sample_period > 0:
            raise ValueError("Sample period must be positive, not {}".format(sample_period))
        if sample_period > self.bit_time:
            raise ValueError("Sample period {}s is too long for {} bit/s".format(sample_period, self.options['baud']))

        diff = differential(can_h, can_l)
        try:
            threshold = estimate_threshold(diff)
        except SignalQualityError as e:
            logger.warning(f"Not decoding capture: {e}")
            return []

        output = []
        machine = FrameStateMachine(put=output.append, show_bits=self.show_bits)
        num_bits = 0
        for bit in extract_bits(recessive_levels(diff, threshold),
                                bit_time=self.bit_time,
                                sample_period=sample_period,
                                flush=self.flush):
            machine.feed(bit)
            num_bits += 1
        machine.finish()

        logger.debug(f"{len(diff)} samples, {num_bits} bits, {machine.frames} frames")
        return output


def decode(can_h, can_l, sample_period: float, baud=125000, **kwargs):
    """
    Decodes a capture with a new Decoder. See Decoder.options for the keyword arguments.
    """
    return Decoder(baud=baud, **kwargs).decode(can_h, can_l, sample_period)
