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


import argparse
import base64
import datetime
import json
import logging
import plistlib
import sys
import typing


from . import __version__
from . import advanced_repr
from . import archive
from . import unarchiving


def make_subcommand_parser(subs: typing.Any, name: str, *, help: str, description: str, **kwargs: typing.Any) -> argparse.ArgumentParser:
	"""Add a subcommand parser with some slightly modified defaults to a subcommand set.
	
	This function is used to ensure that all subcommands use the same base configuration for their ArgumentParser.
	"""
	
	ap = subs.add_parser(
		name,
		formatter_class=argparse.RawDescriptionHelpFormatter,
		help=help,
		description=description,
		allow_abbrev=False,
		add_help=False,
		**kwargs,
	)
	
	ap.add_argument("--help", action="help", help="Display this help message and exit.")
	
	return ap


def open_archive_file(file: str) -> archive.KeyedArchive:
	if file == "-":
		return archive.KeyedArchive.from_stream(sys.stdin.buffer)
	else:
		return archive.KeyedArchive.open(file)


def format_raw_value(value: typing.Any, _containers: typing.FrozenSet[int] = frozenset()) -> str:
	"""Format a value from the raw object table on a single line, with UIDs shown as ``@N``.
	
	A collection that contains itself (only possible in corrupted binary plists) is shown as ``...``.
	"""
	
	if isinstance(value, (dict, list)):
		if id(value) in _containers:
			return "..."
		_containers = _containers | {id(value)}
	
	if isinstance(value, plistlib.UID):
		return f"@{value.data}"
	elif isinstance(value, dict):
		return "{" + ", ".join(f"{key!r}: {format_raw_value(item, _containers)}" for key, item in value.items()) + "}"
	elif isinstance(value, list):
		return "[" + ", ".join(format_raw_value(item, _containers) for item in value) + "]"
	else:
		return repr(value)


def dump_keyed_archive(ka: archive.KeyedArchive) -> typing.Iterable[str]:
	yield f"archiver {ka.archiver!r}, version {ka.version}, {len(ka.objects)} objects"
	yield ""
	yield "top:"
	for key, ref in ka.top.items():
		yield f"\t{key}: {format_raw_value(ref)}"
	yield ""
	yield "objects:"
	for i, obj in enumerate(ka.objects):
		yield f"\t#{i}: {format_raw_value(obj)}"


def do_read(ns: argparse.Namespace) -> typing.NoReturn:
	try:
		ka = open_archive_file(ns.file)
	except archive.InvalidArchiveError as e:
		print(f"Invalid keyed archive: {e}", file=sys.stderr)
		sys.exit(1)
	
	for line in dump_keyed_archive(ka):
		print(line)
	
	sys.exit(0)


def dump_decoded_archive(ka: archive.KeyedArchive) -> typing.Iterable[str]:
	unarchiver = unarchiving.Unarchiver(ka)
	for obj in unarchiver.decode_all():
		yield from advanced_repr.as_multiline_string(obj)


def _json_default(obj: typing.Any) -> typing.Any:
	# bytes are encoded as base64 strings.
	if isinstance(obj, bytes):
		return base64.b64encode(obj).decode("ascii")
	elif isinstance(obj, datetime.datetime):
		return obj.isoformat()
	else:
		raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def dump_decoded_archive_json(ka: archive.KeyedArchive) -> str:
	return json.dumps(unarchiving.Unarchiver(ka).decode_all(), indent=2, default=_json_default)


def do_decode(ns: argparse.Namespace) -> typing.NoReturn:
	try:
		ka = open_archive_file(ns.file)
		if ns.format == "json":
			print(dump_decoded_archive_json(ka))
		else:
			# Decode everything before printing anything,
			# so that invalid archives don't produce partial output.
			lines = list(dump_decoded_archive(ka))
			for line in lines:
				print(line)
	except archive.InvalidArchiveError as e:
		print(f"Invalid keyed archive: {e}", file=sys.stderr)
		sys.exit(1)
	
	sys.exit(0)


def main() -> typing.NoReturn:
	"""Main function of the CLI.
	
	This function is a valid setuptools entry point.
	Arguments are passed in sys.argv,
	and every execution path ends with a sys.exit call.
	"""
	
	ap = argparse.ArgumentParser(
		formatter_class=argparse.RawDescriptionHelpFormatter,
		description="""
%(prog)s is a tool for dumping keyed archives, which are produced by the
NSKeyedArchiver class in Apple's Foundation framework. Both XML and binary
property list archives are supported.
""",
		allow_abbrev=False,
		add_help=False,
	)
	
	ap.add_argument("--help", action="help", help="Display this help message and exit.")
	ap.add_argument("--version", action="version", version=__version__, help="Display version information and exit.")
	ap.add_argument("--verbose", action="store_true", help="Log details about the decoding process to stderr.")
	
	subs = ap.add_subparsers(
		dest="subcommand",
		metavar="SUBCOMMAND",
	)
	
	sub_read = make_subcommand_parser(
		subs,
		"read",
		help="Read and display the raw contents of a keyed archive.",
		description="""
Read and display the raw contents of a keyed archive.

The archive's object table is displayed as it's stored in the property list.
References are not resolved (they are displayed as @N, where N is the index of
the referenced entry in the object table), and objects aren't handled
differently based on their class.
""",
	)
	sub_read.add_argument("file", help="The keyed archive file to read, or - for stdin.")
	
	sub_decode = make_subcommand_parser(
		subs,
		"decode",
		help="Read, decode and display the contents of a keyed archive.",
		description="""
Read, decode and display the contents of a keyed archive.

All references are resolved and every top-level object is decoded into a tree
of plain values. Arrays and sets are displayed as lists, dictionaries as dicts,
and dates as ISO 8601 timestamps. Objects of all other classes are displayed
as generic objects with their field names and decoded values.
""",
	)
	sub_decode.add_argument("--format", choices=["text", "json"], default="text", help="The output format (default: %(default)s).")
	sub_decode.add_argument("file", help="The keyed archive file to read, or - for stdin.")
	
	ns = ap.parse_args()
	
	if ns.verbose:
		logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
	
	if ns.subcommand is None:
		print("Missing subcommand", file=sys.stderr)
		sys.exit(2)
	elif ns.subcommand == "read":
		do_read(ns)
	elif ns.subcommand == "decode":
		do_decode(ns)
	else:
		print(f"Unknown subcommand: {ns.subcommand!r}", file=sys.stderr)
		sys.exit(2)


if __name__ == "__main__":
	sys.exit(main())
