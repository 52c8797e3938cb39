import logging

import numpy as np
import pytest

from canframe import CANFrame
from canscope import Decoder, decode
from waveforms import Capture, SAMPLES_PER_BIT, sample_period, to_waveform


def frames_of(annotations):
    return [a.message for a in annotations if a.category == 'can-frame']


def categories(annotations):
    return [a.category for a in annotations]


def decode_capture(capture, baud=500000, **kwargs):
    can_h, can_l = capture.waveform()
    return decode(can_h, can_l, sample_period(baud), baud=baud, **kwargs)


def test_scenario(scenario_capture):
    annotations = decode_capture(scenario_capture)
    messages = frames_of(annotations)
    assert len(messages) == 1
    m = messages[0]
    assert not m.extended
    assert not m.remote
    assert m.id == 0x123
    assert m.dlc == 2
    assert bytes(m.data) == bytes([0xab, 0xcd])
    assert m.ack
    assert not m.stuffing_error
    assert not m.end_of_frame_error
    assert not m.intermission_silence_error
    assert m.crc_valid
    assert m.crc_sequence == scenario_capture.frames[0].crc


def test_scenario_annotations(scenario_capture):
    annotations = decode_capture(scenario_capture)
    frame = scenario_capture.frames[0]

    assert annotations[0].category == 'sof'
    assert annotations[0].start == scenario_capture.sample(0, 0)
    assert annotations[0].end == scenario_capture.sample(0, 1)

    assert annotations[1].category == 'can-frame'
    assert annotations[1].start == scenario_capture.sample(0, 0)
    assert annotations[1].end == scenario_capture.sample(0, len(frame))
    assert annotations[1].label == "ID=0x123 (Std) DLC=2 DATA=0xabcd"
    assert annotations[1].errors == ()

    labels = {a.category: a.label for a in annotations}
    assert labels['can-id'] == "ID=0x123 (Standard)"
    assert labels['rtr'] == "RTR=Data"
    assert labels['ide'] == "IDE=Standard"
    assert labels['dlc'] == "DLC 0x2"
    assert labels['data'] == "DATA=0xabcd"
    assert labels['ack'] == "ACK"
    assert [a.label for a in annotations if a.category == 'can-payload'] == ["DATA0=0xab", "DATA1=0xcd"]
    assert 'stuff-error' not in labels
    assert 'crc-mismatch' not in labels

    crc = [a for a in annotations if a.category == 'crc'][0]
    position = frame.fields_position['crc']
    assert crc.start == scenario_capture.sample(0, position.start)
    # The stuff bit after the CRC sequence belongs to the CRC field
    assert crc.end <= scenario_capture.sample(0, position.stop)


@pytest.mark.parametrize('frame', [
    CANFrame(can_id=0x000),
    CANFrame(can_id=0x7ff & 0x5a5, data=bytes([0x01])),
    CANFrame(can_id=0x000, data=bytes([0x00] * 8)),
    CANFrame(can_id=0x0f0, data=bytes([0xff, 0x00, 0xff, 0x00, 0x55])),
    CANFrame(can_id=0x321, data=bytes(range(1, 8))),
    CANFrame(can_id=0x0f0, rtr=True, dlc=4),
    CANFrame(can_id=0x12345678, ide=True, data=bytes([0xde, 0xad, 0xbe, 0xef])),
    CANFrame(can_id=0x00000001, ide=True),
    CANFrame(can_id=0x10a5a5a5, ide=True, rtr=True, dlc=2),
    CANFrame(can_id=0x0cafe123, ide=True, data=bytes([0x00] * 8)),
])
@pytest.mark.parametrize('baud', [125000, 250000, 500000, 1000000])
def test_round_trip(frame, baud):
    messages = frames_of(decode_capture(Capture(frame), baud=baud))
    assert len(messages) == 1
    m = messages[0]
    assert m.id == frame.can_id
    assert m.extended == bool(frame.ide)
    assert m.remote == bool(frame.rtr)
    assert m.dlc == frame.dlc
    assert bytes(m.data) == frame.data
    assert m.ack
    assert not m.has_errors
    assert m.crc_valid


def test_several_frames():
    sent = [CANFrame(can_id=0x100, data=bytes([1])),
            CANFrame(can_id=0x1fedcba9, ide=True, data=bytes([2, 3])),
            CANFrame(can_id=0x0a5, rtr=True, dlc=1)]
    capture = Capture(*sent, gap=5)
    annotations = decode_capture(capture)
    messages = frames_of(annotations)
    assert [m.id for m in messages] == [f.can_id for f in sent]
    assert [m.extended for m in messages] == [False, True, False]
    assert [m.remote for m in messages] == [False, False, True]
    assert categories(annotations).count('sof') == 3
    assert [m.start for m in messages] == [capture.sample(i, 0) for i in range(3)]


def test_no_ack():
    messages = frames_of(decode_capture(Capture(CANFrame(can_id=0x123, data=bytes([0x55]), ack=1))))
    assert len(messages) == 1
    assert not messages[0].ack
    assert not messages[0].has_errors


def test_idempotent(scenario_capture):
    can_h, can_l = scenario_capture.waveform()
    decoder = Decoder(baud=500000)
    first = decoder.decode(can_h, can_l, sample_period(500000))
    second = decoder.decode(can_h, can_l, sample_period(500000))
    assert first == second
    assert [str(a) for a in first] == [str(a) for a in second]
    assert decode(can_h, can_l, sample_period(500000), baud=500000) == first


def test_bad_signal(caplog):
    can_h = np.full(5000, 2.6, dtype=np.float32)
    can_l = np.full(5000, 2.4, dtype=np.float32)
    can_h[::7] = 3.5
    with caplog.at_level(logging.WARNING):
        assert decode(can_h, can_l, 1e-7, baud=500000) == []
    assert "Not decoding capture" in caplog.text


def test_attenuated_signal(scenario_capture):
    can_h, can_l = scenario_capture.waveform()
    # 0.5V differential swing is too small
    assert decode(2.5 + (can_h - 2.5) / 4, 2.5 + (can_l - 2.5) / 4, sample_period(500000), baud=500000) == []


def test_offset_signal(scenario_capture):
    can_h, can_l = scenario_capture.waveform()
    messages = frames_of(decode(can_h + 0.7, can_l - 0.2, sample_period(500000), baud=500000))
    assert [m.id for m in messages] == [0x123]


def test_noisy_signal(scenario_capture):
    can_h, can_l = scenario_capture.waveform()
    can_h = can_h.copy()
    # Overshoot and undershoot on the edges must not move the threshold
    edges = np.flatnonzero(np.diff(can_h) != 0) + 1
    can_h[edges] += 1.5 * np.sign(can_h[edges] - can_h[edges - 1])
    messages = frames_of(decode(can_h, can_l, sample_period(500000), baud=500000))
    assert [m.id for m in messages] == [0x123]
    assert bytes(messages[0].data) == bytes([0xab, 0xcd])


def test_stuffing_error(scenario_frame):
    bits = list(scenario_frame.frame_bits)
    stuff = scenario_frame.stuff_positions[0]
    # Replace the stuff bit with a sixth identical bit
    bits[stuff] = bits[stuff - 1]
    capture = Capture(bits)
    annotations = decode_capture(capture)
    messages = frames_of(annotations)
    assert len(messages) == 1
    m = messages[0]
    assert m.stuffing_error
    assert m.error_index('stuffing') == capture.sample(0, stuff)
    assert m.id == 0x123
    assert bytes(m.data) == bytes([0xab, 0xcd])
    errors = [a for a in annotations if a.category == 'stuff-error']
    assert len(errors) == 1
    assert errors[0].start == capture.sample(0, stuff)
    assert errors[0].end == capture.sample(0, stuff + 1)


@pytest.mark.parametrize('eof_bit', [0, 3, 6])
def test_end_of_frame_error(scenario_frame, eof_bit):
    bits = list(scenario_frame.frame_bits)
    position = scenario_frame.fields_position['eof'].start + eof_bit
    bits[position] = False
    second = CANFrame(can_id=0x456, data=bytes([0x12]))
    capture = Capture(bits, second)
    annotations = decode_capture(capture)
    messages = frames_of(annotations)
    assert [m.id for m in messages] == [0x123, 0x456]
    assert messages[0].end_of_frame_error
    assert messages[0].error_index('end_of_frame') == capture.sample(0, position)
    assert not messages[0].intermission_silence_error
    assert not messages[1].has_errors
    assert 'eof-error' in categories(annotations)


def test_end_of_frame_error_first_wins(scenario_frame):
    bits = list(scenario_frame.frame_bits)
    eof = scenario_frame.fields_position['eof'].start
    bits[eof + 2] = False
    bits[eof + 4] = False
    capture = Capture(bits)
    messages = frames_of(decode_capture(capture))
    assert messages[0].error_index('end_of_frame') == capture.sample(0, eof + 2)


def test_intermission_error(scenario_frame):
    bits = list(scenario_frame.frame_bits)
    position = scenario_frame.fields_position['ifs'].start + 1
    bits[position] = False
    second = CANFrame(can_id=0x456, data=bytes([0x12]))
    capture = Capture(bits, second)
    annotations = decode_capture(capture)
    messages = frames_of(annotations)
    assert [m.id for m in messages] == [0x123, 0x456]
    assert messages[0].intermission_silence_error
    assert messages[0].error_index('intermission_silence') == capture.sample(0, position)
    assert not messages[0].end_of_frame_error
    assert not messages[1].has_errors
    error = [a for a in annotations if a.category == 'ifs-error'][0]
    assert error.start == capture.sample(0, position)
    assert error.errors == ('intermission_silence',)


def test_crc_mismatch():
    frame = CANFrame(can_id=0x123, data=bytes([0xab, 0xcd]), bad_crc=True)
    annotations = decode_capture(Capture(frame))
    messages = frames_of(annotations)
    assert len(messages) == 1
    assert not messages[0].crc_valid
    assert messages[0].crc_sequence == frame.crc ^ 1
    assert messages[0].crc_computed == frame.crc
    assert not messages[0].has_errors
    assert 'crc-mismatch' in categories(annotations)


def test_truncated_capture(scenario_frame):
    capture = Capture(scenario_frame, tail=0)
    can_h, can_l = capture.waveform()
    # Cut the capture in the middle of the data field
    end = capture.sample(0, scenario_frame.fields_position['data'].start + 4)
    annotations = decode(can_h[:end], can_l[:end], sample_period(500000), baud=500000)
    assert categories(annotations) == ['sof']


def test_trailing_bits(scenario_capture):
    # The frame ends with the recessive ACK delimiter, EOF and IFS: without the bits after the
    # last edge it never completes
    assert categories(decode_capture(scenario_capture, trailing_bits='No')) == ['sof']
    assert len(frames_of(decode_capture(scenario_capture, trailing_bits='Yes'))) == 1


def test_trailing_bits_next_frame(scenario_frame):
    capture = Capture(scenario_frame, CANFrame(can_id=0x456, data=bytes([0x12])))
    messages = frames_of(decode_capture(capture, trailing_bits='No'))
    assert [m.id for m in messages] == [0x123]


def test_bits(scenario_capture):
    annotations = decode_capture(scenario_capture, bits='Yes')
    frame = scenario_capture.frames[0]
    stuffbits = [a for a in annotations if a.category == 'stuffbit']
    assert [a.start for a in stuffbits] == [scenario_capture.sample(0, p) for p in frame.stuff_positions]
    bits = [a for a in annotations if a.category in ('bit', 'stuffbit')]
    assert len(bits) == len(scenario_capture.bits)
    assert all(a.end == b.start for a, b in zip(bits, bits[1:]))
    assert len(frames_of(annotations)) == 1


def test_waveform_needs_integration():
    # Without 11 recessive bits before it the frame is not decoded
    frame = CANFrame(can_id=0x123, data=bytes([0xab, 0xcd]))
    bits = [i % 2 == 1 for i in range(48)] + [True] * 5 + frame.frame_bits + [True] * 3
    can_h, can_l = to_waveform(bits)
    annotations = decode(can_h, can_l, sample_period(500000), baud=500000)
    assert frames_of(annotations) == []


def test_options():
    decoder = Decoder()
    assert decoder.options == {'baud': 125000, 'trailing-bits': 'Yes', 'bits': 'No'}
    assert decoder.bit_time == pytest.approx(8e-6)
    assert Decoder(baud='125_000').options['baud'] == 125000
    assert Decoder(baud='1000000').bit_time == pytest.approx(1e-6)
    assert Decoder(trailing_bits='No').flush is False
    assert Decoder(bits='Yes').show_bits is True


@pytest.mark.parametrize('kwargs', [
    {'baud': 100000},
    {'baud': 'fast'},
    {'bits': True},
    {'colour': 'red'},
])
def test_bad_options(kwargs):
    with pytest.raises(ValueError):
        Decoder(**kwargs)


def test_bad_inputs():
    decoder = Decoder(baud=500000)
    with pytest.raises(ValueError):
        decoder.decode([1.0, 2.0], [1.0], 1e-7)
    with pytest.raises(ValueError):
        decoder.decode([1.0, 2.0], [1.0, 2.0], 0)
    with pytest.raises(ValueError):
        decoder.decode([1.0, 2.0], [1.0, 2.0], 1e-5)


def test_annotation_tables():
    names = [name for name, _ in Decoder.annotations]
    for category in ('sof', 'can-frame', 'stuff-error', 'eof-error', 'ifs-error'):
        assert category in names
    for _, _, row in Decoder.annotation_rows:
        assert all(0 <= i < len(names) for i in row)


def test_samples_per_bit():
    assert SAMPLES_PER_BIT * sample_period(500000) == pytest.approx(2e-6)
