"""Decode YAML documents into caller-specified schema types."""

import logging
from pathlib import Path
from typing import IO, Any, TypeVar, Union

import yaml
from pydantic import TypeAdapter, ValidationError

from weblaunch.domain.correlation_id import CorrelationLoggerAdapter
from weblaunch.domain.errors import FileOpenError, YamlDecodeError

T = TypeVar("T")

CONFIG_LOGGER = CorrelationLoggerAdapter(logging.getLogger("weblaunch.config"), {})


def load_config(stream: Union[IO[str], IO[bytes], str], schema: type[T]) -> T:
    """Decode the first YAML document of ``stream`` into ``schema``.

    ``schema`` may be anything pydantic can validate: a ``BaseModel``, a
    dataclass, a ``TypedDict`` or a plain container type. Keys the schema does
    not declare are ignored. An empty document is a decode error.
    """
    try:
        data = yaml.safe_load(stream)
    except yaml.YAMLError as error:
        raise YamlDecodeError(f"error loading config: {error}") from error
    if data is None:
        raise YamlDecodeError("error loading config: empty document")

    try:
        return TypeAdapter(schema).validate_python(data)
    except ValidationError as error:
        raise YamlDecodeError(f"error loading config: {error}") from error


def load_config_file(path: Union[str, Path], schema: type[T]) -> T:
    """Open ``path`` and decode it with :func:`load_config`."""
    try:
        handle = open(path, "r", encoding="utf-8")  # pylint: disable=consider-using-with
    except OSError as error:
        raise FileOpenError(f"error opening file: {error}") from error

    with handle:
        config = load_config(handle, schema)
    CONFIG_LOGGER.debug(
        "Configuration file loaded",
        extra={"event": "config_loaded", "path": str(path)},
    )
    return config


def dump_config(value: Any) -> str:
    """Encode ``value`` (a model, dataclass or container) as a YAML document."""
    data = TypeAdapter(type(value)).dump_python(value, mode="json", by_alias=True)
    return yaml.safe_dump(data, sort_keys=False)
