"""Global parameter store loaded from a YAML parameter file."""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar

import numpy as np
import yaml


class _ParameterLoader(yaml.SafeLoader):
    """Safe YAML loader that also understands matrix nodes."""


_INTEGER_DTYPES = {"u", "c", "w", "s", "i"}


def _construct_matrix(loader: yaml.SafeLoader, node: yaml.Node) -> np.ndarray:
    fields = loader.construct_mapping(node, deep=True)
    try:
        rows, cols, data = int(fields["rows"]), int(fields["cols"]), fields["data"]
    except KeyError as exc:
        raise ValueError(f"matrix node is missing field {exc.args[0]!r}") from None
    dtype = int if str(fields.get("dt", "d")) in _INTEGER_DTYPES else float
    return np.asarray(data, dtype=dtype).reshape(rows, cols)


_ParameterLoader.add_constructor("tag:yaml.org,2002:opencv-matrix", _construct_matrix)


def _strip_version_header(text: str) -> str:
    lines = text.splitlines()
    if lines and lines[0].startswith("%YAML:"):
        lines = lines[1:]
    return "\n".join(lines)


def load_parameters(filename) -> dict[str, Any]:
    """Read a parameter file into a dictionary."""
    path = Path(filename)
    if not path.is_file():
        raise FileNotFoundError(f"parameter file {filename} does not exist.")
    text = _strip_version_header(path.read_text(encoding="utf-8"))
    data = yaml.load(text, Loader=_ParameterLoader)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"parameter file {filename} must hold a mapping at top level")
    return data


class Config:
    """Process-wide parameters, set once from a file and read by key."""

    _parameters: ClassVar[dict[str, Any] | None] = None

    @classmethod
    def set_parameter_file(cls, filename) -> None:
        cls._parameters = load_parameters(filename)

    @classmethod
    def get(cls, key: str) -> Any:
        if cls._parameters is None:
            raise RuntimeError("no parameter file has been set")
        try:
            return cls._parameters[key]
        except KeyError:
            raise KeyError(f"parameter {key!r} not found") from None