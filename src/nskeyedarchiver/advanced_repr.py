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
import typing


__all__ = [
	"prefix_lines",
	"count_description",
	"AsMultilineStringBase",
	"as_multiline_string",
]


def prefix_lines(
	lines: typing.Iterable[str],
	*,
	first: str = "",
	rest: str = "",
) -> typing.Iterable[str]:
	it = iter(lines)
	
	try:
		yield first + next(it)
	except StopIteration:
		if first:
			yield first
	
	if rest:
		for line in it:
			yield rest + line
	else:
		yield from it


def count_description(count: int, singular: str, plural: str) -> str:
	if count == 0:
		return "empty"
	elif count == 1:
		return f"1 {singular}"
	else:
		return f"{count} {plural}"


def _join_header_and_body(header: str, body: typing.Iterable[str]) -> typing.Iterable[str]:
	body_it = iter(body)
	# Append the colon to the header only if at least one body line comes after it.
	try:
		second = next(body_it)
	except StopIteration:
		yield header
	else:
		yield header + ":"
		yield "\t" + second
		for line in body_it:
			yield "\t" + line


class AsMultilineStringBase(object):
	"""Base class for classes that want to implement a custom multiline string representation,
	for use by :func:`as_multiline_string`.
	
	This also provides an implementation of ``__str__`` based on :meth:`~AsMultilineStringBase._as_multiline_string_`.
	"""
	
	def _as_multiline_string_header_(self) -> str:
		"""Render the header part of this object's multiline string representation.
		
		The header should be a compact single-line overview description of the object,
		e. g. its class and the number of fields.
		If the body part is non-empty,
		then the header automatically has a colon appended.
		"""
		
		raise NotImplementedError()
	
	def _as_multiline_string_body_(self) -> typing.Iterable[str]:
		"""Render the body part of this object's multiline string representation.
		
		Each line in the body is automatically indented by one tab
		so that the body appears visually nested under the header.
		
		:return: The string representation as an iterable of lines (line terminators not included).
		"""
		
		raise NotImplementedError()
	
	def _as_multiline_string_(self) -> typing.Iterable[str]:
		"""Convert ``self`` to a multiline string representation.
		
		This method should not be called directly -
		use :func:`as_multiline_string` instead.
		"""
		
		yield from _join_header_and_body(self._as_multiline_string_header_(), self._as_multiline_string_body_())
	
	def __str__(self) -> str:
		return "\n".join(self._as_multiline_string_())


def _list_body(elements: typing.Sequence[typing.Any]) -> typing.Iterable[str]:
	for element in elements:
		yield from as_multiline_string(element)


def _dict_body(contents: typing.Mapping[typing.Any, typing.Any]) -> typing.Iterable[str]:
	for key, value in contents.items():
		yield from as_multiline_string(value, prefix=f"{key!r}: ")


def as_multiline_string(obj: object, *, prefix: str = "") -> typing.Iterable[str]:
	"""Convert a decoded value to a multiline string representation.
	
	Objects with an :meth:`~AsMultilineStringBase._as_multiline_string_` method use it.
	Lists and dicts are rendered as a header followed by their indented contents,
	dates in ISO 8601 format,
	and everything else using :func:`repr`.
	
	:param obj: The object to represent.
	:param prefix: An optional prefix to add in front of the first line of the string representation.
		Convenience shortcut for :func:`prefix_lines`.
	:return: The string representation as an iterable of lines (line terminators not included).
	"""
	
	res: typing.Iterable[str]
	if isinstance(obj, AsMultilineStringBase):
		res = obj._as_multiline_string_()
	elif isinstance(obj, list):
		res = _join_header_and_body(f"list, {count_description(len(obj), 'element', 'elements')}", _list_body(obj))
	elif isinstance(obj, dict):
		res = _join_header_and_body(f"dict, {count_description(len(obj), 'entry', 'entries')}", _dict_body(obj))
	elif isinstance(obj, datetime.datetime):
		res = [f"date {obj.isoformat()}"]
	else:
		res = repr(obj).splitlines()
	
	yield from prefix_lines(res, first=prefix)
