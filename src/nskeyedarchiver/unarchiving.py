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
import enum
import logging
import os
import plistlib
import typing

from . import advanced_repr
from . import timestamps
from .archive import (
	ArchiveStructureError,
	CircularReferenceError,
	KeyedArchive,
)


__all__ = [
	"PRIMITIVE_TYPES",
	"ClassResolutionError",
	"ArchivedClass",
	"GenericArchivedObject",
	"Rule",
	"DATE_CLASS_NAMES",
	"STRING_CLASS_NAMES",
	"ARRAY_CLASS_NAMES",
	"DICTIONARY_CLASS_NAMES",
	"classify_class_name",
	"Unarchiver",
	"unarchive",
	"unarchive_from_stream",
	"unarchive_from_file",
]


logger = logging.getLogger(__name__)


# Object table entries of these types are returned unchanged.
# datetime only occurs in XML plists that use a <date> element,
# which NSKeyedArchiver itself never writes.
PRIMITIVE_TYPES = (bool, int, float, str, bytes, datetime.datetime)

# Fields of archived objects that describe the object's class and are never part of the decoded value.
_CLASS_KEYS = ("$class", "$classes")


class ClassResolutionError(LookupError):
	"""Raised if the class of an archived object cannot be determined.
	
	This is not fatal -
	objects whose class cannot be resolved are decoded as generic objects.
	"""


class ArchivedClass(object):
	"""Information about a class as it is stored in a keyed archive's class descriptor entries."""
	
	name: str
	classes: typing.Sequence[str]
	
	def __init__(self, name: str, classes: typing.Sequence[str]) -> None:
		super().__init__()
		
		self.name = name
		self.classes = classes
	
	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}(name={self.name!r}, classes={self.classes!r})"
	
	def __str__(self) -> str:
		superclasses = [name for name in self.classes if name != self.name]
		if superclasses:
			return f"{self.name}, extends {', '.join(superclasses)}"
		else:
			return self.name
	
	def __eq__(self, other: object) -> bool:
		if not isinstance(other, ArchivedClass):
			return NotImplemented
		
		return self.name == other.name and list(self.classes) == list(other.classes)


class GenericArchivedObject(advanced_repr.AsMultilineStringBase, typing.Dict[str, typing.Any]):
	"""Representation of an archived object of a class that has no special decoding rule.
	
	This is a regular :class:`dict` that maps the object's field names to their decoded values,
	so it compares equal to a plain dict with the same contents.
	The object's class is additionally available as :attr:`archived_class`,
	which is ``None`` if the class couldn't be resolved.
	"""
	
	archived_class: typing.Optional[ArchivedClass]
	
	def __init__(self, archived_class: typing.Optional[ArchivedClass], fields: typing.Iterable[typing.Tuple[str, typing.Any]] = ()) -> None:
		super().__init__(fields)
		
		self.archived_class = archived_class
	
	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}(archived_class={self.archived_class!r}, fields={dict(self)!r})"
	
	def _as_multiline_string_header_(self) -> str:
		if self.archived_class is None:
			header = "object of unknown class"
		else:
			header = f"object of class {self.archived_class}"
		if not self:
			header += ", no contents"
		return header
	
	def _as_multiline_string_body_(self) -> typing.Iterable[str]:
		for key, value in self.items():
			yield from advanced_repr.as_multiline_string(value, prefix=f"{key}: ")


class Rule(enum.Enum):
	"""The ways in which an archived object can be reconstructed, selected based on its class name."""
	
	DATE = "date"
	STRING = "string"
	ARRAY = "array/set"
	DICTIONARY = "dictionary"
	OBJECT = "generic object"


DATE_CLASS_NAMES = frozenset({"NSDate"})
# Plain NSString is not included -
# NSKeyedArchiver writes NSString values as plain strings in the object table,
# so only the mutable subclass is stored as an object with an NS.string field.
STRING_CLASS_NAMES = frozenset({"NSMutableString"})
# Sets are decoded into lists just like arrays.
ARRAY_CLASS_NAMES = frozenset({"NSArray", "NSMutableArray", "NSSet", "NSMutableSet"})
# NSMutableArray is also listed here,
# but ARRAY_CLASS_NAMES is always checked first.
DICTIONARY_CLASS_NAMES = frozenset({"NSDictionary", "NSMutableDictionary", "NSMutableArray"})


def classify_class_name(class_name: typing.Optional[str]) -> Rule:
	"""Select the rule used to reconstruct an archived object of the given class.
	
	The rules are checked in a fixed order and the first match wins.
	``None`` (an object whose class couldn't be resolved)
	and all names without a special rule
	select :attr:`Rule.OBJECT`.
	"""
	
	if class_name is None:
		return Rule.OBJECT
	elif class_name in DATE_CLASS_NAMES:
		return Rule.DATE
	elif class_name in STRING_CLASS_NAMES:
		return Rule.STRING
	elif class_name in ARRAY_CLASS_NAMES:
		return Rule.ARRAY
	elif class_name in DICTIONARY_CLASS_NAMES:
		return Rule.DICTIONARY
	else:
		return Rule.OBJECT


def _is_reference_list(value: typing.Any) -> bool:
	return isinstance(value, list) and all(isinstance(item, plistlib.UID) for item in value)


class Unarchiver(object):
	"""Decodes the objects in a :class:`~nskeyedarchiver.archive.KeyedArchive` into regular Python values.
	
	References are resolved recursively.
	A reference that appears more than once is decoded separately every time,
	so the resulting values never share any mutable parts.
	"""
	
	archive: KeyedArchive
	_in_progress: typing.List[int]
	
	@classmethod
	def from_data(cls, data: bytes) -> "Unarchiver":
		"""Create an unarchiver for the given XML or binary keyed archive data."""
		
		return cls(KeyedArchive.from_data(data))
	
	@classmethod
	def from_stream(cls, f: typing.BinaryIO) -> "Unarchiver":
		"""Create an unarchiver for the keyed archive data in the given byte stream.
		
		The stream is read completely, but not closed.
		"""
		
		return cls(KeyedArchive.from_stream(f))
	
	@classmethod
	def open(cls, filename: typing.Union[str, bytes, os.PathLike]) -> "Unarchiver":
		"""Create an unarchiver for the keyed archive file at the given path."""
		
		return cls(KeyedArchive.open(filename))
	
	def __init__(self, archive: KeyedArchive) -> None:
		super().__init__()
		
		self.archive = archive
		# Object table indices of the objects that are currently being decoded,
		# outermost first.
		self._in_progress = []
	
	def resolve_class(self, class_field: typing.Any) -> ArchivedClass:
		"""Look up the class descriptor that an object's ``$class`` field points to.
		
		:raise ClassResolutionError: If the field is not a UID or doesn't point to a class descriptor with a ``$classname``.
		:raise ObjectReferenceError: If the UID is outside the object table.
		"""
		
		if not isinstance(class_field, plistlib.UID):
			raise ClassResolutionError(f"Could not find class for {class_field!r}: $class must be a UID")
		
		descriptor = self.archive.dereference(class_field)
		if not isinstance(descriptor, dict):
			raise ClassResolutionError(f"Class descriptor #{class_field.data} must be a dictionary, not {type(descriptor).__name__}")
		
		name = descriptor.get("$classname")
		if not isinstance(name, str):
			raise ClassResolutionError(f"Class descriptor #{class_field.data} has no $classname string")
		
		classes = descriptor.get("$classes")
		if not isinstance(classes, list) or not all(isinstance(item, str) for item in classes):
			classes = [name]
		
		return ArchivedClass(name, classes)
	
	def classify(self, entry: typing.Mapping[str, typing.Any]) -> typing.Tuple[Rule, typing.Optional[ArchivedClass]]:
		"""Determine how to reconstruct an archived object.
		
		:return: The selected rule and the object's class,
			or ``None`` instead of the class if it couldn't be resolved.
		"""
		
		try:
			archived_class = self.resolve_class(entry.get("$class"))
		except ClassResolutionError as e:
			logger.debug("Decoding as generic object: %s", e)
			return Rule.OBJECT, None
		
		return classify_class_name(archived_class.name), archived_class
	
	def decode_reference(self, ref: typing.Any) -> typing.Any:
		"""Decode the object that the given UID points to.
		
		:raise ArchiveStructureError: If ``ref`` is not a UID or the referenced object is malformed.
		:raise ObjectReferenceError: If a UID is outside the object table.
		:raise CircularReferenceError: If the object (directly or indirectly) references itself.
		"""
		
		entry = self.archive.dereference(ref)
		
		if isinstance(entry, PRIMITIVE_TYPES):
			return entry
		elif isinstance(entry, dict):
			index = ref.data
			if index in self._in_progress:
				chain = self._in_progress[self._in_progress.index(index):] + [index]
				raise CircularReferenceError(f"Circular reference to object #{index}: {' -> '.join(f'#{i}' for i in chain)}", index=index, chain=chain)
			
			self._in_progress.append(index)
			try:
				return self._decode_composite(entry)
			finally:
				self._in_progress.pop()
		else:
			raise ArchiveStructureError(f"Object table entry #{ref.data} has unsupported type {type(entry).__name__}")
	
	def decode_references(self, refs: typing.Sequence[typing.Any]) -> typing.List[typing.Any]:
		"""Decode the objects that the given UIDs point to, keeping their order."""
		
		logger.debug("Decoding %d objects from object table with %d entries", len(refs), len(self.archive.objects))
		return [self.decode_reference(ref) for ref in refs]
	
	def _decode_composite(self, entry: typing.Mapping[str, typing.Any]) -> typing.Any:
		rule, archived_class = self.classify(entry)
		
		if rule == Rule.DATE:
			return self._decode_date(entry)
		elif rule == Rule.STRING:
			return self._decode_string(entry)
		elif rule == Rule.ARRAY:
			return self.decode_references(self._get_reference_list(entry, "NS.objects", archived_class))
		elif rule == Rule.DICTIONARY:
			return self._decode_dictionary(entry, archived_class)
		elif rule == Rule.OBJECT:
			return self._decode_object(entry, archived_class)
		else:
			raise AssertionError(f"Unhandled rule: {rule}")
	
	def _get_reference_list(self, entry: typing.Mapping[str, typing.Any], key: str, archived_class: typing.Optional[ArchivedClass]) -> typing.List[plistlib.UID]:
		class_name = "unknown" if archived_class is None else archived_class.name
		try:
			value = entry[key]
		except KeyError:
			raise ArchiveStructureError(f"{class_name} object is missing the {key!r} field") from None
		
		if not _is_reference_list(value):
			raise ArchiveStructureError(f"{key!r} field of {class_name} object must be an array of UIDs, not {value!r}")
		
		return value
	
	def _decode_date(self, entry: typing.Mapping[str, typing.Any]) -> datetime.datetime:
		time = entry.get("NS.time")
		if not isinstance(time, (int, float)) or isinstance(time, bool):
			raise ArchiveStructureError(f"'NS.time' field of NSDate object must be a number, not {time!r}")
		
		try:
			return timestamps.nsdate_to_datetime(time)
		except (ValueError, OverflowError) as e:
			raise ArchiveStructureError(f"Invalid NSDate timestamp {time!r}: {e}") from e
	
	def _decode_string(self, entry: typing.Mapping[str, typing.Any]) -> str:
		string = entry.get("NS.string")
		if not isinstance(string, str):
			raise ArchiveStructureError(f"'NS.string' field of NSMutableString object must be a string, not {string!r}")
		return string
	
	def _decode_dictionary(self, entry: typing.Mapping[str, typing.Any], archived_class: typing.Optional[ArchivedClass]) -> typing.Dict[str, typing.Any]:
		key_refs = self._get_reference_list(entry, "NS.keys", archived_class)
		value_refs = self._get_reference_list(entry, "NS.objects", archived_class)
		if len(key_refs) != len(value_refs):
			raise ArchiveStructureError(f"Dictionary has {len(key_refs)} keys, but {len(value_refs)} values")
		
		keys = self.decode_references(key_refs)
		values = self.decode_references(value_refs)
		
		contents = {}
		for i, (key, value) in enumerate(zip(keys, values)):
			if not isinstance(key, str):
				raise ArchiveStructureError(f"Dictionary key at index {i} must be a string, not {type(key).__name__}")
			contents[key] = value
		return contents
	
	def _decode_object(self, entry: typing.Mapping[str, typing.Any], archived_class: typing.Optional[ArchivedClass]) -> GenericArchivedObject:
		# Fields that are references are collected and decoded together,
		# then merged back with the primitive fields in the original field order.
		primitive_fields: typing.Dict[str, typing.Any] = {}
		reference_field_names: typing.List[str] = []
		reference_field_refs: typing.List[plistlib.UID] = []
		list_fields: typing.Dict[str, typing.List[plistlib.UID]] = {}
		
		for key, value in entry.items():
			if key in _CLASS_KEYS:
				logger.debug("Ignoring class field %r", key)
			elif isinstance(value, PRIMITIVE_TYPES):
				primitive_fields[key] = value
			elif isinstance(value, plistlib.UID):
				reference_field_names.append(key)
				reference_field_refs.append(value)
			elif _is_reference_list(value):
				# Classes without a special rule (e. g. NSOrderedSet) can still store arrays of references.
				list_fields[key] = value
			else:
				raise ArchiveStructureError(f"Field {key!r} of archived object has unsupported value {value!r}")
		
		decoded_fields = dict(zip(reference_field_names, self.decode_references(reference_field_refs)))
		for key, refs in list_fields.items():
			decoded_fields[key] = self.decode_references(refs)
		
		decoded_fields.update(primitive_fields)
		return GenericArchivedObject(archived_class, [(key, decoded_fields[key]) for key in entry if key not in _CLASS_KEYS])
	
	def decode_all(self) -> typing.List[typing.Any]:
		"""Decode all top-level objects in the archive, in archive order."""
		
		return self.decode_references(self.archive.top_references())
	
	def decode_single_root(self) -> typing.Any:
		"""Decode the single top-level object in the archive.
		
		:raise ValueError: If the archive doesn't contain exactly one top-level object.
		"""
		
		refs = self.archive.top_references()
		
		if not refs:
			raise ValueError("Archive contains no top-level objects")
		elif len(refs) > 1:
			raise ValueError(f"Archive contains {len(refs)} top-level objects (expected exactly one)")
		else:
			(ref,) = refs
			return self.decode_reference(ref)


def unarchive(data: bytes) -> typing.List[typing.Any]:
	"""Decode all top-level objects in the given XML or binary keyed archive data.
	
	:raise InvalidArchiveError: If the data is not a valid keyed archive.
		No partially decoded objects are returned in this case.
	"""
	
	return Unarchiver.from_data(data).decode_all()


def unarchive_from_stream(f: typing.BinaryIO) -> typing.List[typing.Any]:
	"""Decode all top-level objects in the keyed archive data in the given byte stream."""
	
	return Unarchiver.from_stream(f).decode_all()


def unarchive_from_file(path: typing.Union[str, bytes, os.PathLike]) -> typing.List[typing.Any]:
	"""Decode all top-level objects in the given keyed archive file."""
	
	return Unarchiver.open(path).decode_all()
