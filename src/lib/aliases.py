"""
Alias resolution

Post-parse pass turning every message that carries an ``alias`` extra
field into an injected system message followed by a prefixed user message,
and collecting the config the used aliases contribute.

Alias tables are plain mappings of name -> AliasDescriptor. They can be
built in code or loaded from YAML:

    translate:
      system: You translate text to French.
      user_prefix: "Translate: "
      config:
        temperature: 0.1
"""

from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..models.parser import Message
from ..models.processors import AliasDescriptor, Role
from .errors import ParseError
from .log import LOG


AliasTable = Mapping[str, AliasDescriptor]


def aliases_build(raw: Mapping[str, Any]) -> Dict[str, AliasDescriptor]:
    """
    Validate a raw alias mapping into AliasDescriptors.

    Args:
        raw: name -> dict (or AliasDescriptor)

    Returns:
        name -> AliasDescriptor

    Raises:
        ParseError: If an entry is not a valid alias descriptor
    """
    table: Dict[str, AliasDescriptor] = {}
    for name, entry in (raw or {}).items():
        if isinstance(entry, AliasDescriptor):
            table[str(name)] = entry
            continue
        try:
            table[str(name)] = AliasDescriptor.model_validate(entry)
        except PydanticValidationError as e:
            raise ParseError(f"Invalid alias '{name}': {e.errors()[0]['msg']}") from e
    return table


def aliases_load(path: Union[str, Path]) -> Dict[str, AliasDescriptor]:
    """
    Load an alias table from a YAML file.

    Raises:
        ParseError: If the file is not a YAML mapping of valid aliases
    """
    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ParseError(f"Alias file '{path}' is not valid YAML: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ParseError(f"Alias file '{path}' must contain a mapping of alias names")
    table = aliases_build(raw)
    LOG(f"Loaded {len(table)} aliases from {path}", level=2)
    return table


class AliasResolver:
    """
    Expands alias messages and collects alias config

    Attributes:
        aliases: name -> AliasDescriptor lookup table
    """

    def __init__(self, aliases: AliasTable = None) -> None:
        self.aliases: Dict[str, AliasDescriptor] = dict(aliases or {})

    def resolve(self, messages: List[Message]) -> Tuple[List[Message], Dict[str, Any], List[ParseError]]:
        """
        Replace alias messages with their system/user pair.

        An unknown alias degrades to a plain user message and produces a
        ParseError warning. When several aliases are used, later ones win for
        any config key they share.

        Args:
            messages: Parsed messages, in document order

        Returns:
            (new message list, merged alias config, warnings)

        Example:
            With alias {system: "S", user_prefix: "P: "} and a message
            Message(USER, "X", {"alias": "name"}):
            [Message(SYSTEM, "S"), Message(USER, "P: X")]
        """
        resolved: List[Message] = []
        config: Dict[str, Any] = {}
        warnings: List[ParseError] = []

        for message in messages:
            if "alias" not in message.extra:
                resolved.append(message)
                continue

            name = message.extra["alias"]
            extra = {k: v for k, v in message.extra.items() if k != "alias"}
            descriptor = self.aliases.get(name)
            if descriptor is None:
                warning = ParseError(f"Unknown alias '{name}'")
                warnings.append(warning)
                LOG(str(warning), level=1)
                resolved.append(Message(role=Role.USER, content=message.content, extra=extra))
                continue

            resolved.append(Message(role=Role.SYSTEM, content=descriptor.system, extra={"alias": name}))
            resolved.append(Message(
                role=Role.USER,
                content=descriptor.user_prefix + message.content,
                extra={**extra, "alias": name},
            ))
            config.update(descriptor.config)
            LOG(f"Expanded alias '{name}'", level=3)

        return resolved, config, warnings
