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
from .annotation import Annotation, AnnotationClass
from .bits import Bit, BitDestuffer, extract_bits
from .message import CanMessage, SerialCRC
from .pd import Decoder, decode
from .signal import SignalQualityError, differential, estimate_threshold

__version__ = '0.1.0'
