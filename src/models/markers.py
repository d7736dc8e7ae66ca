"""
Marker grammar for chat documents

Fixed literal markers for the core roles, the ignore/config/header regions,
and the option-line syntax used inside blocks. Block types own their own
state markers (see lib.blocks); only the generic prefixes that end a block
span live here.
"""

from typing import Dict
import re


MARKERS: Dict[str, str] = {
    "USER": ">>> user",
    "ASSISTANT": "<<< assistant",
    "SYSTEM": ">>> system",
    "ALIAS": ">>> alias:",
    "WEB": ">>> web",
    "REFERENCE": ">>> reference",
    "CONFIG": ">>> config",
    "CONFIG_END": "<<< config",
    "IGNORE": "```ignore",
    "IGNORE_END": "```",
    "HEADER": "---",
}

# Any line starting with one of these ends the span of a block
TOPLEVEL_PREFIXES = (">>>", "<<<")

# -- key: value
OPTION_PATTERN = re.compile(r"^\s*--+\s*(\w+)\s*:\s*(.+?)\s*$")

# key: value
CONFIG_PATTERN = re.compile(r"^\s*([A-Za-z_][\w-]*)\s*:\s*(.*?)\s*$")

# Spellings of the placeholder replaced by the document preamble
FILE_CONTENTS_PLACEHOLDERS = ("%%FILE_CONTENTS%%", "${FILE_CONTENTS}", "$FILE_CONTENTS")

AUTO_TITLE_INSTRUCTION = (
    "\nFor your first response, please begin with 'Proposed Title: ' followed by "
    "a concise 3-7 word title summarizing this conversation. Place this on the "
    "first line of your response."
)


def toplevel_is(line: str) -> bool:
    """Check if a line opens a new top-level section (message or block)"""
    return line.startswith(TOPLEVEL_PREFIXES)


def option_is(line: str) -> bool:
    """Check if a line is a comment-style '-- key: value' option"""
    return line.lstrip().startswith("--")
