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


import os
import plistlib
import typing
import xml.parsers.expat


__all__ = [
	"ARCHIVER_NAME",
	"ARCHIVER_VERSION",
	"REQUIRED_KEYS",
	"InvalidArchiveError",
	"PropertyListError",
	"ArchiveValidationError",
	"ArchiveStructureError",
	"ObjectReferenceError",
	"CircularReferenceError",
	"load_plist",
	"validate_archive",
	"extract_top_references",
	"KeyedArchive",
]


# Value of the $archiver key in every archive produced by NSKeyedArchiver.
ARCHIVER_NAME = "NSKeyedArchiver"
# Value of the $version key.
# NSKeyedArchiver has written this version since Mac OS X 10.2 and no other value is known.
ARCHIVER_VERSION = 100000

# The top-level keys that every keyed archive must have,
# in the order in which they are checked.
REQUIRED_KEYS = ("$archiver", "$top", "$objects", "$version")

# In XML plists,
# UIDs are stored as a dictionary with this single key and an integer value,
# because the XML format has no dedicated element for them.
_XML_UID_KEY = "CF$UID"

_BINARY_PLIST_MAGIC = b"bplist00"


class InvalidArchiveError(Exception):
	"""Base class for all errors raised when data is not a valid keyed archive or doesn't match the expected structure."""


class PropertyListError(InvalidArchiveError):
	"""Raised if the data couldn't be parsed as a property list at all."""


class ArchiveValidationError(InvalidArchiveError):
	"""Raised if the top-level structure of the archive is missing a required key or has an unexpected value for it.
	
	This is always detected before any objects are decoded.
	"""
	
	key: str
	expected: typing.Any
	actual: typing.Any
	
	def __init__(self, message: str, *, key: str, expected: typing.Any = None, actual: typing.Any = None) -> None:
		super().__init__(message)
		
		self.key = key
		self.expected = expected
		self.actual = actual


class ArchiveStructureError(InvalidArchiveError):
	"""Raised if a field of an archived object is missing or has the wrong type or shape."""


class ObjectReferenceError(InvalidArchiveError):
	"""Raised if a UID doesn't point to an entry of the object table."""
	
	index: int
	
	def __init__(self, message: str, *, index: int) -> None:
		super().__init__(message)
		
		self.index = index


class CircularReferenceError(ObjectReferenceError):
	"""Raised if an archived object (directly or indirectly) contains a reference to itself.
	
	Such archives cannot be decoded into a tree of plain values.
	"""
	
	chain: typing.Sequence[int]
	
	def __init__(self, message: str, *, index: int, chain: typing.Sequence[int]) -> None:
		super().__init__(message, index=index)
		
		self.chain = chain


def _convert_xml_uids(value: typing.Any) -> typing.Any:
	"""Recursively replace ``{"CF$UID": n}`` dictionaries (as read from an XML plist) with :class:`plistlib.UID` objects.
	
	Binary plists don't need this,
	because :mod:`plistlib` already decodes their UID objects as :class:`plistlib.UID`.
	"""
	
	if isinstance(value, dict):
		if len(value) == 1 and _XML_UID_KEY in value:
			number = value[_XML_UID_KEY]
			if isinstance(number, int) and not isinstance(number, bool) and number >= 0:
				return plistlib.UID(number)
		return {key: _convert_xml_uids(item) for key, item in value.items()}
	elif isinstance(value, list):
		return [_convert_xml_uids(item) for item in value]
	else:
		return value


def load_plist(data: bytes) -> typing.Any:
	"""Parse an XML or binary property list into plain Python values.
	
	UIDs are always returned as :class:`plistlib.UID`,
	regardless of whether the data is in XML or binary format.
	Only XML data needs converting,
	so values decoded from a binary plist are returned exactly as :mod:`plistlib` produced them.
	
	:raise PropertyListError: If the data is not a valid property list in any format supported by :mod:`plistlib`.
	"""
	
	try:
		plist = plistlib.loads(data)
	except (plistlib.InvalidFileException, xml.parsers.expat.ExpatError, ValueError, AttributeError, TypeError, KeyError, IndexError) as e:
		# plistlib's XML parser fails with AttributeError on malformed <date> elements.
		raise PropertyListError(f"Could not parse data as a property list: {e}") from e
	
	# Binary plists already contain plistlib.UID objects,
	# and a corrupted one can contain a collection that references itself.
	if data[:len(_BINARY_PLIST_MAGIC)] == _BINARY_PLIST_MAGIC:
		return plist
	
	try:
		return _convert_xml_uids(plist)
	except RecursionError:
		raise PropertyListError("Property list is nested too deeply") from None


def _describe(value: typing.Any) -> str:
	return f"{value!r} ({type(value).__name__})"


def validate_archive(plist: typing.Any) -> None:
	"""Check that a decoded property list has the top-level structure of a keyed archive.
	
	The required keys are checked in a fixed order (see :data:`REQUIRED_KEYS`)
	and only the first problem is reported.
	
	:raise ArchiveValidationError: If a required key is missing or has an unexpected value.
	"""
	
	if not isinstance(plist, dict):
		raise ArchiveValidationError(f"Keyed archive must be a dictionary at the top level, not {type(plist).__name__}", key="", expected="dict", actual=type(plist).__name__)
	
	for key in REQUIRED_KEYS:
		if key not in plist:
			raise ArchiveValidationError(f"Invalid keyed archive, missing key {key!r}", key=key)
		
		value = plist[key]
		if key == "$archiver":
			if not isinstance(value, str):
				raise ArchiveValidationError(f"Invalid type for key {key!r}: expected a string, got {_describe(value)}", key=key, expected=ARCHIVER_NAME, actual=value)
			elif value != ARCHIVER_NAME:
				raise ArchiveValidationError(f"Invalid value {value!r} for key {key!r}, expected {ARCHIVER_NAME!r}", key=key, expected=ARCHIVER_NAME, actual=value)
		elif key == "$version":
			# bool is a subclass of int, but a boolean $version is just as wrong as a string one.
			if not isinstance(value, int) or isinstance(value, bool):
				raise ArchiveValidationError(f"Invalid type for key {key!r}: expected an integer, got {_describe(value)}", key=key, expected=ARCHIVER_VERSION, actual=value)
			elif value != ARCHIVER_VERSION:
				raise ArchiveValidationError(f"Invalid value {value} for key {key!r}, expected {ARCHIVER_VERSION}", key=key, expected=ARCHIVER_VERSION, actual=value)
	
	if not isinstance(plist["$top"], dict):
		raise ArchiveValidationError(f"Invalid type for key '$top': expected a dictionary, got {_describe(plist['$top'])}", key="$top", expected="dict", actual=plist["$top"])
	if not isinstance(plist["$objects"], list):
		raise ArchiveValidationError(f"Invalid type for key '$objects': expected an array, got {_describe(plist['$objects'])}", key="$objects", expected="list", actual=plist["$objects"])


def extract_top_references(top: typing.Mapping[str, typing.Any]) -> typing.List[plistlib.UID]:
	"""Convert the archive's ``$top`` dictionary into a list of references to the top-level objects.
	
	An archive created with ``+[NSKeyedArchiver archivedDataWithRootObject:]`` has a single ``root`` key.
	Objects encoded one after another without explicit keys
	are stored under the keys ``$0``, ``$1``, etc. instead,
	which are returned in numeric order.
	
	:raise ArchiveStructureError: If a sequential key is missing or a value is not a UID.
	"""
	
	keys: typing.List[str]
	if "root" in top:
		keys = ["root"]
	else:
		keys = [f"${i}" for i in range(len(top))]
	
	refs = []
	for key in keys:
		try:
			ref = top[key]
		except KeyError:
			raise ArchiveStructureError(f"Missing key {key!r} in $top (expected keys $0 through ${len(top) - 1})") from None
		
		if not isinstance(ref, plistlib.UID):
			raise ArchiveStructureError(f"$top entry {key!r} must be a UID, not {_describe(ref)}")
		refs.append(ref)
	
	return refs


class KeyedArchive(object):
	"""A validated keyed archive, as decoded from a property list.
	
	This is the low-level representation of the archive -
	references in the object table are not resolved
	and objects aren't handled differently based on their class.
	To decode the archived objects into regular Python values,
	use :class:`~nskeyedarchiver.unarchiving.Unarchiver`.
	"""
	
	archiver: str
	version: int
	top: typing.Dict[str, typing.Any]
	objects: typing.List[typing.Any]
	
	@classmethod
	def from_plist(cls, plist: typing.Any) -> "KeyedArchive":
		"""Create an archive from an already decoded property list, after checking its top-level structure."""
		
		validate_archive(plist)
		return cls(plist["$archiver"], plist["$version"], plist["$top"], plist["$objects"])
	
	@classmethod
	def from_data(cls, data: bytes) -> "KeyedArchive":
		"""Read a keyed archive from XML or binary property list data."""
		
		return cls.from_plist(load_plist(data))
	
	@classmethod
	def from_stream(cls, f: typing.BinaryIO) -> "KeyedArchive":
		"""Read a keyed archive from the remaining data in the given byte stream.
		
		The stream is not closed.
		"""
		
		return cls.from_data(f.read())
	
	@classmethod
	def open(cls, filename: typing.Union[str, bytes, os.PathLike]) -> "KeyedArchive":
		"""Read the keyed archive file at the given path."""
		
		with open(filename, "rb") as f:
			return cls.from_stream(f)
	
	def __init__(self, archiver: str, version: int, top: typing.Dict[str, typing.Any], objects: typing.List[typing.Any]) -> None:
		super().__init__()
		
		self.archiver = archiver
		self.version = version
		self.top = top
		self.objects = objects
	
	def __repr__(self) -> str:
		return f"<{type(self).__module__}.{type(self).__qualname__} at {id(self):#x}: archiver {self.archiver!r}, version {self.version}, {len(self.top)} top-level entries, {len(self.objects)} objects>"
	
	def top_references(self) -> typing.List[plistlib.UID]:
		"""Get the references to all top-level objects, in archive order."""
		
		return extract_top_references(self.top)
	
	def dereference(self, ref: typing.Any) -> typing.Any:
		"""Look up the raw object table entry that a UID points to.
		
		:raise ArchiveStructureError: If ``ref`` is not a UID.
		:raise ObjectReferenceError: If the UID is outside the object table.
		"""
		
		if not isinstance(ref, plistlib.UID):
			raise ArchiveStructureError(f"Expected a UID, not {_describe(ref)}")
		
		index = ref.data
		if not 0 <= index < len(self.objects):
			raise ObjectReferenceError(f"UID {index} is out of range for object table of length {len(self.objects)}", index=index)
		
		return self.objects[index]
