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
from binascii import hexlify
from collections import OrderedDict

from .annotation import Annotation, ERROR_CATEGORIES


class SerialCRC:
    def __init__(self, initial=0, polynomial=0x4599, size=15):
        self.initial = initial
        self.polynomial = polynomial
        self.size = size
        self.crc = initial
        self.mask = (1 << size) - 1

    def add_bit(self, bit):
        d = int(bit)
        crc_xor = ((self.crc << 1) ^ self.polynomial) & self.mask
        crc_shift = (self.crc << 1) & self.mask
        crc_next = crc_xor if d ^ self.crc >> (self.size - 1) else crc_shift
        self.crc = crc_next

    def reset(self):
        self.crc = self.initial


class CanMessage:
    """
    Accumulates the fields of one CAN frame while it is decoded.

    The sample range of every field is recorded as the bits arrive so that the field annotations
    can be produced when the frame is complete. Nothing is output for a frame that never completes.
    """
    MAX_DATA_BYTES = 8

    def __init__(self, start: int):
        self.start = start
        self.end = None  # type: int
        self.id = 0
        self.extended = False
        self.remote = False
        self.srr = False  # bit after the 11-bit ID: RTR in standard frames, SRR in extended ones
        self.dlc = 0
        self.data = bytearray()
        self.crc = 0
        self.ack = False
        self.spans = OrderedDict()  # field name -> [start, end]
        self.errors = OrderedDict()  # error flag -> (start, end) of the first offending bit
        self._crc_rg = SerialCRC()

    ########### ERRORS ############
    def _set_error(self, name: str, index: int, end: int = None):
        # Only the first violation of each kind is kept
        if name not in self.errors:
            self.errors[name] = (index, index + 1 if end is None else end)

    def set_stuffing_error(self, index: int, end: int = None):
        self._set_error('stuffing', index, end)

    def set_end_of_frame_error(self, index: int, end: int = None):
        self._set_error('end_of_frame', index, end)

    def set_intermission_silence_error(self, index: int, end: int = None):
        self._set_error('intermission_silence', index, end)

    def error_index(self, name: str):
        if name not in ERROR_CATEGORIES:
            raise KeyError("Unknown error flag '{}'".format(name))
        return self.errors[name][0] if name in self.errors else None

    @property
    def stuffing_error(self) -> bool:
        return 'stuffing' in self.errors

    @property
    def end_of_frame_error(self) -> bool:
        return 'end_of_frame' in self.errors

    @property
    def intermission_silence_error(self) -> bool:
        return 'intermission_silence' in self.errors

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    ########### FIELDS ############
    def mark(self, name: str, bit):
        """
        Extends the sample range of a field to include a bit
        """
        if name in self.spans:
            self.spans[name][1] = bit.end
        else:
            self.spans[name] = [bit.start, bit.end]

    def add_crc_bit(self, bit):
        self._crc_rg.add_bit(bit.value)

    @property
    def num_data_bytes(self) -> int:
        """
        Length of the data field: remote frames have none and DLC values above 8 mean 8 bytes
        """
        if self.remote:
            return 0
        return min(self.dlc, self.MAX_DATA_BYTES)

    @property
    def crc_sequence(self) -> int:
        """
        The received 15-bit CRC; the bottom bit of the crc field is the CRC delimiter
        """
        return self.crc >> 1

    @property
    def crc_computed(self) -> int:
        return self._crc_rg.crc

    @property
    def crc_valid(self) -> bool:
        return self.crc_sequence == self.crc_computed

    def id_str(self) -> str:
        if self.extended:
            return "0x{:08x}".format(self.id)
        return "0x{:03x}".format(self.id)

    def data_str(self) -> str:
        return hexlify(bytes(self.data)).decode("ascii")

    ########### OUTPUT ############
    def seal(self, end: int):
        """
        Completes the frame.

        :param end: sample after the last bit of the intermission
        :return: list of annotations, the frame first, then its fields and then its errors
        """
        self.end = end
        result = [self.frame_annotation()]
        result += self.field_annotations()
        if 'crc' in self.spans and not self.crc_valid:
            start, crc_end = self.spans['crc']
            result.append(Annotation(start, crc_end, 'crc-mismatch',
                                     ["CRC mismatch (0x{:04x})".format(self.crc_computed),
                                      "CRC mismatch",
                                      "C",
                                      ""]))
        for name, (index, error_end) in self.errors.items():
            category = ERROR_CATEGORIES[name]
            descriptions = {
                'stuff-error': ['Stuff error', 'Error', 'E', ''],
                'eof-error': ['End-of-frame error', 'EOF error', 'E', ''],
                'ifs-error': ['Intermission error', 'IFS error', 'E', ''],
            }[category]
            result.append(Annotation(index, error_end, category, descriptions, errors=(name,)))
        return result

    def frame_annotation(self) -> Annotation:
        kind = "Ext" if self.extended else "Std"
        if self.remote:
            payload = "RTR"
        else:
            payload = "DATA=0x{}".format(self.data_str()) if len(self.data) > 0 else "DATA="
        descriptions = ["ID={} ({}) DLC={} {}".format(self.id_str(), kind, self.dlc, payload),
                        "ID={} DLC={}".format(self.id_str(), self.dlc),
                        "ID={}".format(self.id_str()),
                        "ID",
                        ""]
        if self.errors:
            descriptions[0] += " [{}]".format(", ".join(self.errors))
        return Annotation(self.start, self.end, 'can-frame', descriptions,
                          errors=tuple(self.errors), message=self)

    def field_annotations(self):
        result = []
        spans = self.spans
        if 'ida' in spans:
            id_end = spans['idb'][1] if 'idb' in spans else spans['ida'][1]
            kind = "Extended" if self.extended else "Standard"
            result.append(Annotation(spans['ida'][0], id_end, 'can-id',
                                     ["ID={} ({})".format(self.id_str(), kind),
                                      "ID={}".format(self.id_str()),
                                      "ID",
                                      ""]))
        if 'srr' in spans:
            start, end = spans['srr']
            if self.extended:
                result.append(Annotation(start, end, 'srr', ["SRR={}".format(int(self.srr)), ""]))
            else:
                result.append(Annotation(start, end, 'rtr', self._rtr_descriptions()))
        if 'ide' in spans:
            start, end = spans['ide']
            result.append(Annotation(start, end, 'ide', ["IDE=Extended" if self.extended else "IDE=Standard",
                                                         "IDE={}".format(int(self.extended)),
                                                         "IDE",
                                                         "I",
                                                         ""]))
        if 'rtr' in spans:
            start, end = spans['rtr']
            result.append(Annotation(start, end, 'rtr', self._rtr_descriptions()))
        for name in ('r1', 'r0'):
            if name in spans:
                start, end = spans[name]
                result.append(Annotation(start, end, name, [name, ""]))
        if 'dlc' in spans:
            start, end = spans['dlc']
            result.append(Annotation(start, end, 'dlc', ["DLC 0x{:x}".format(self.dlc), "DLC", ""]))
        for i, b in enumerate(self.data):
            start, end = spans['databyte{}'.format(i)]
            result.append(Annotation(start, end, 'can-payload', ["DATA{}=0x{:02x}".format(i, b),
                                                                 "0x{:02x}".format(b),
                                                                 "{:02x}".format(b),
                                                                 ""]))
        if len(self.data) > 0:
            result.append(Annotation(spans['databyte0'][0], spans['databyte{}'.format(len(self.data) - 1)][1], 'data',
                                     ["DATA=0x{}".format(self.data_str()),
                                      "0x{}".format(self.data_str()),
                                      "DATA",
                                      "D",
                                      ""]))
        if 'crc' in spans:
            start, end = spans['crc']
            result.append(Annotation(start, end, 'crc', ["CRC 0x{:04x}".format(self.crc_sequence), "CRC", ""]))
        for name, descriptions in (('crc-delimiter', ["CRC delimiter", ""]),
                                   ('ack', ["ACK" if self.ack else "No ACK", "A", ""]),
                                   ('ack-delimiter', ["ACK delimiter", ""]),
                                   ('eof', ["EOF", ""]),
                                   ('ifs', ["IFS", ""])):
            if name in spans:
                start, end = spans[name]
                result.append(Annotation(start, end, name, descriptions))
        return result

    def _rtr_descriptions(self):
        return ["RTR=Remote" if self.remote else "RTR=Data",
                "RTR={}".format(int(self.remote)),
                "RTR",
                "R",
                ""]

    def to_dict(self):
        return {
            "id": self.id,
            "extended": self.extended,
            "remote": self.remote,
            "dlc": self.dlc,
            "data": list(self.data),
            "crc": self.crc,
            "ack": self.ack,
            "start": self.start,
            "end": self.end,
            "errors": OrderedDict((name, index) for name, (index, _) in self.errors.items()),
        }

    def __eq__(self, other):
        if not isinstance(other, CanMessage):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None

    def __repr__(self):
        return "CanMessage(id={}, extended={}, remote={}, dlc={}, data={}, ack={}, errors={})".format(
            self.id_str(), self.extended, self.remote, self.dlc, self.data_str(), self.ack, list(self.errors))
