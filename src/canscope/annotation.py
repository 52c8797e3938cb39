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
Annotations produced by the decoder. Each annotation covers a range of samples and carries a list
of descriptions from the longest to the shortest, so a viewer can pick the one that fits.
"""
from collections import OrderedDict, namedtuple


class AnnotationClass:
    classes = OrderedDict()

    def __init__(self, name: str, description: str):
        if name in self.classes:
            raise KeyError("Annotation '{}' already used".format(name))
        self.name = name
        self.description = description
        self.index = len(self.classes)
        self.classes[name] = self
        self.used = False

    @classmethod
    def lookup(cls, name: str) -> int:
        if name not in cls.classes:
            raise KeyError("Annotation '{}' not known".format(name))
        if not cls.classes[name].used:
            raise KeyError("Annotation '{}' not used in a row".format(name))
        return cls.classes[name].index

    @classmethod
    def get_annotation_row(cls, names):
        for name in names:
            if name not in cls.classes:
                raise KeyError("Annotation '{}' not known".format(name))
            cls.classes[name].used = True
        return tuple(cls.lookup(name) for name in names)

    @classmethod
    def get_annotations(cls):
        return tuple([(a.name, a.description) for a in cls.classes.values()])


_ = (
    AnnotationClass('can-frame', 'CAN frame'),
    AnnotationClass('sof', 'Start of frame'),
    AnnotationClass('can-id', 'CAN ID'),
    AnnotationClass('srr', 'RTR/SRR'),
    AnnotationClass('ide', 'IDE'),
    AnnotationClass('rtr', 'RTR'),
    AnnotationClass('r1', 'r1'),
    AnnotationClass('r0', 'r0'),
    AnnotationClass('dlc', 'DLC'),
    AnnotationClass('can-payload', 'CAN Payload'),
    AnnotationClass('data', 'Payload'),
    AnnotationClass('crc', 'CRC'),
    AnnotationClass('crc-delimiter', 'CRC delimiter'),
    AnnotationClass('ack', 'ACK'),
    AnnotationClass('ack-delimiter', 'ACK delimiter'),
    AnnotationClass('eof', 'End-of-frame'),
    AnnotationClass('ifs', 'IFS'),
    AnnotationClass('stuff-error', 'Stuff error'),
    AnnotationClass('eof-error', 'End-of-frame error'),
    AnnotationClass('ifs-error', 'Intermission error'),
    AnnotationClass('crc-mismatch', 'CRC mismatch'),
    AnnotationClass('bit', 'Bit'),
    AnnotationClass('stuffbit', 'Stuff bit'),
)

# Error flag of a CAN message -> annotation category
ERROR_CATEGORIES = OrderedDict([
    ('stuffing', 'stuff-error'),
    ('end_of_frame', 'eof-error'),
    ('intermission_silence', 'ifs-error'),
])


class Annotation(namedtuple('Annotation', 'start end category descriptions errors message')):
    """
    :param start: first sample of the annotation
    :param end: sample after the last one covered
    :param category: name of an AnnotationClass
    :param descriptions: labels, longest first
    :param errors: names of the error flags this annotation reports
    :param message: the decoded CanMessage for 'can-frame' annotations, otherwise None
    """
    __slots__ = ()

    def __new__(cls, start: int, end: int, category: str, descriptions, errors=(), message=None):
        if category not in AnnotationClass.classes:
            raise KeyError("Annotation '{}' not known".format(category))
        return super().__new__(cls, start, end, category, tuple(descriptions), tuple(errors), message)

    @property
    def label(self) -> str:
        return self.descriptions[0] if self.descriptions else ''

    @property
    def index(self) -> int:
        return AnnotationClass.lookup(self.category)

    def __str__(self):
        result = "{}-{} {}: {}".format(self.start, self.end, self.category, self.label)
        if self.errors:
            result += " [{}]".format(", ".join(self.errors))
        return result
