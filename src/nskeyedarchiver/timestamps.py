# This file is part of the python-nskeyedarchiver library.
# Copyright (C) 2020 dgelessus
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.


import datetime


__all__ = [
	"CORE_DATA_EPOCH_OFFSET",
	"CORE_DATA_EPOCH",
	"nsdate_to_datetime",
]


_UNIX_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)

# Number of seconds between the Unix epoch and the Core Data/Cocoa reference date.
CORE_DATA_EPOCH_OFFSET = 978307200
# The reference date of NSDate (and CFAbsoluteTime), 2001-01-01 00:00:00 UTC.
CORE_DATA_EPOCH = _UNIX_EPOCH + datetime.timedelta(seconds=CORE_DATA_EPOCH_OFFSET)


def nsdate_to_datetime(timestamp: float) -> datetime.datetime:
	"""Convert a Core Data timestamp (seconds since :data:`CORE_DATA_EPOCH`) to an aware UTC datetime.
	
	The timestamp is rounded (not truncated) to millisecond precision,
	and the three fractional digits are interpreted as milliseconds.
	Some other decoders put these digits into the nanosecond component instead,
	which makes their results differ from this function's by up to one second.
	
	:raise ValueError: If the timestamp is not a finite number.
	"""
	
	whole, _, fraction = f"{timestamp:.3f}".partition(".")
	try:
		seconds = int(whole)
		milliseconds = int(fraction)
	except ValueError:
		raise ValueError(f"Cannot convert non-finite timestamp {timestamp!r} to a datetime") from None
	
	# "-0.250" has a whole part of 0, so the sign has to be taken from the string.
	if whole.startswith("-"):
		milliseconds = -milliseconds
	
	return _UNIX_EPOCH + datetime.timedelta(seconds=seconds + CORE_DATA_EPOCH_OFFSET, milliseconds=milliseconds)
