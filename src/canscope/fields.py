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
CAN 2.0A/B field state machine.

Every field of a frame is a separate state carrying only its own counters. Bits go through the
destuffer first; only the bits it passes on drive the state machine.
"""
import logging
from collections import namedtuple

from .annotation import Annotation
from .bits import Bit, BitDestuffer
from .message import CanMessage

logger = logging.getLogger(__name__)

# Recessive bits needed to integrate into bus activity
BUS_IDLE_BITS = 11
EOF_BITS = 7
IFS_BITS = 3
CRC_POSITIONS = 16  # 15-bit CRC sequence plus its delimiter

Unknown = namedtuple('Unknown', 'recessive_count')
Gap = namedtuple('Gap', [])
Arbitration = namedtuple('Arbitration', 'significance')
ReqRemote = namedtuple('ReqRemote', [])
ExtendedFrameBit = namedtuple('ExtendedFrameBit', [])
ExtendedArbitration = namedtuple('ExtendedArbitration', 'significance')
RemoteTransmissionBit = namedtuple('RemoteTransmissionBit', [])
Reserved1 = namedtuple('Reserved1', [])
Reserved2 = namedtuple('Reserved2', [])
Control = namedtuple('Control', 'position')
Data = namedtuple('Data', 'position byte')
CRC = namedtuple('CRC', 'position')
AckBit = namedtuple('AckBit', [])
AckDelimiter = namedtuple('AckDelimiter', [])
EndOfFrame = namedtuple('EndOfFrame', 'position')
InterFrameSeparation = namedtuple('InterFrameSeparation', 'position')

# Fields that are bit stuffed. SOF is covered by the run counting in Gap.
STUFFED_FIELDS = (Arbitration, ReqRemote, ExtendedFrameBit, ExtendedArbitration, RemoteTransmissionBit,
                  Reserved1, Reserved2, Control, Data, CRC)


class FrameStateMachine:
    """
    Decodes bits into CAN frames.

    :param put: called with each Annotation in output order
    :param show_bits: also output an annotation for every bit
    """
    def __init__(self, put, show_bits=False):
        self.put = put
        self.show_bits = show_bits
        self.destuffer = BitDestuffer()
        self.state = Unknown(recessive_count=0)
        self.message = None  # type: CanMessage
        self.frames = 0

    def feed(self, bit: Bit):
        kind = self.destuffer.feed(bit, stuffing=isinstance(self.state, STUFFED_FIELDS))
        if self.show_bits:
            self.put_bit(bit, stuffbit=kind != BitDestuffer.DATA)

        if kind == BitDestuffer.STUFF_ERROR:
            self.message.set_stuffing_error(bit.start, bit.end)
        elif kind == BitDestuffer.DATA:
            self.state = self.step(self.state, bit)

    def finish(self):
        """
        Called at the end of the capture. A frame still in progress is dropped.
        """
        if self.message is not None:
            logger.debug(f"Capture ended inside a frame starting at sample {self.message.start} ({self.state})")
            self.message = None

    def put_bit(self, bit: Bit, stuffbit: bool):
        value = '1' if bit.value else '0'
        if stuffbit:
            self.put(Annotation(bit.start, bit.end, 'stuffbit', ["Stuff bit={}".format(value), value, '']))
        else:
            self.put(Annotation(bit.start, bit.end, 'bit', [value, '']))

    def step(self, state, bit: Bit):
        """
        Decodes one bit.

        :param state: the field the bit belongs to
        :param bit: a bit that is not a stuff bit
        :return: the field the next bit belongs to
        """
        m = self.message

        if isinstance(state, Unknown):
            self.destuffer.reset(0)
            # Wait for the bus to go idle so decoding does not start inside a frame
            if bit.dominant:
                return Unknown(recessive_count=0)
            if state.recessive_count + 1 >= BUS_IDLE_BITS:
                logger.debug(f"Bus idle at sample {bit.end}")
                return Gap()
            return Unknown(recessive_count=state.recessive_count + 1)

        elif isinstance(state, Gap):
            self.destuffer.reset(1)
            if bit.dominant:
                self.message = CanMessage(start=bit.start)
                self.message.mark('sof', bit)
                self.message.add_crc_bit(bit)
                self.put(Annotation(bit.start, bit.end, 'sof', ["SOF", "S", ""]))
                return Arbitration(significance=10)
            return state

        elif isinstance(state, Arbitration):
            m.mark('ida', bit)
            m.add_crc_bit(bit)
            if bit.value:
                m.id += 1 << state.significance
            if state.significance == 0:
                return ReqRemote()
            return Arbitration(significance=state.significance - 1)

        elif isinstance(state, ReqRemote):
            m.mark('srr', bit)
            m.add_crc_bit(bit)
            m.srr = bit.value
            m.remote = bit.value
            return ExtendedFrameBit()

        elif isinstance(state, ExtendedFrameBit):
            m.mark('ide', bit)
            m.add_crc_bit(bit)
            m.extended = bit.value
            if m.extended:
                # The 11 bits received so far are the top of the 29-bit ID
                m.id <<= 18
                return ExtendedArbitration(significance=17)
            return Reserved2()

        elif isinstance(state, ExtendedArbitration):
            m.mark('idb', bit)
            m.add_crc_bit(bit)
            if bit.value:
                m.id += 1 << state.significance
            if state.significance == 0:
                return RemoteTransmissionBit()
            return ExtendedArbitration(significance=state.significance - 1)

        elif isinstance(state, RemoteTransmissionBit):
            m.mark('rtr', bit)
            m.add_crc_bit(bit)
            m.remote = bit.value
            return Reserved1()

        elif isinstance(state, Reserved1):
            m.mark('r1', bit)
            m.add_crc_bit(bit)
            return Reserved2()

        elif isinstance(state, Reserved2):
            m.mark('r0', bit)
            m.add_crc_bit(bit)
            return Control(position=0)

        elif isinstance(state, Control):
            m.mark('dlc', bit)
            m.add_crc_bit(bit)
            if bit.value:
                m.dlc += 1 << (3 - state.position)
            if state.position == 3:
                if m.num_data_bytes > 0:
                    return Data(position=0, byte=0)
                return CRC(position=0)
            return Control(position=state.position + 1)

        elif isinstance(state, Data):
            m.mark('databyte{}'.format(state.position // 8), bit)
            m.add_crc_bit(bit)
            byte = state.byte
            if bit.value:
                byte += 1 << (7 - state.position % 8)
            position = state.position + 1
            if position % 8 == 0:
                m.data.append(byte)
                if len(m.data) == m.num_data_bytes:
                    return CRC(position=0)
                return Data(position=position, byte=0)
            return Data(position=position, byte=byte)

        elif isinstance(state, CRC):
            m.mark('crc' if state.position < CRC_POSITIONS - 1 else 'crc-delimiter', bit)
            if bit.value:
                m.crc += 1 << (CRC_POSITIONS - 1 - state.position)
            if state.position == CRC_POSITIONS - 1:
                return AckBit()
            return CRC(position=state.position + 1)

        elif isinstance(state, AckBit):
            m.mark('ack', bit)
            # Any receiver acknowledges by driving the slot dominant
            m.ack = bit.dominant
            return AckDelimiter()

        elif isinstance(state, AckDelimiter):
            m.mark('ack-delimiter', bit)
            return EndOfFrame(position=0)

        elif isinstance(state, EndOfFrame):
            m.mark('eof', bit)
            if bit.dominant:
                m.set_end_of_frame_error(bit.start, bit.end)
            if state.position == EOF_BITS - 1:
                return InterFrameSeparation(position=0)
            return EndOfFrame(position=state.position + 1)

        elif isinstance(state, InterFrameSeparation):
            m.mark('ifs', bit)
            if bit.dominant:
                m.set_intermission_silence_error(bit.start, bit.end)
            if state.position == IFS_BITS - 1:
                for annotation in m.seal(end=bit.end):
                    self.put(annotation)
                self.frames += 1
                logger.debug(f"Frame {m!r} at samples {m.start}-{m.end}")
                self.message = None
                return Gap()
            return InterFrameSeparation(position=state.position + 1)

        raise AssertionError("Unknown field state {!r}".format(state))
