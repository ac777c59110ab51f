#
# pick the output format, then write the report in it
#

import dataclasses
import json as jsonlib
import logging
from datetime import datetime
from enum import Enum
from ipaddress import IPv4Address, IPv6Address
from typing import Any, List, Optional, Sequence, TextIO, Union

from .connection import ConnectionReport
from .entities import DecodedEntity
from .errors import SerializationError
from .model import ParseReport
from .render import render_connection_report, render_parse_report
from .settings import OutputFormat, Settings, Theme

logger = logging.getLogger(__name__)

Report = Union[ParseReport, ConnectionReport]

# dropped from JSON with --no-pem
_PEM_KEYS = ("raw_pem", "pem")


def negotiate_format(json: bool = False, pem: bool = False, text: bool = False,
                     stream: Optional[TextIO] = None) -> OutputFormat:
    """Explicit flag wins (json, then pem, then text); else json unless a tty."""
    if sum((json, pem, text)) > 1:
        raise ValueError("at most one output format may be requested")

    if json:
        return OutputFormat.JSON
    if pem:
        return OutputFormat.PEM
    if text:
        return OutputFormat.TEXT

    isatty = getattr(stream, "isatty", None)
    return OutputFormat.TEXT if isatty and isatty() else OutputFormat.JSON


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (IPv4Address, IPv6Address)):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, bytes):
        return obj.hex()
    raise TypeError(f"{type(obj).__name__} is not JSON serializable")


def _strip_pem(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _strip_pem(v) for k, v in value.items() if k not in _PEM_KEYS}
    if isinstance(value, list):
        return [_strip_pem(v) for v in value]
    return value


def _plain(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, (list, tuple)):
        return [_plain(o) for o in obj]
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items()}
    return obj


def to_json(obj: Any, include_pem: bool = True) -> str:
    """Serialize a model object (or list/dict of them) with stable field names."""
    plain = _plain(obj)
    if not include_pem:
        plain = _strip_pem(plain)
    try:
        return jsonlib.dumps(plain, indent=2, default=_json_default)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"could not serialize report: {e}") from e


def _pem_texts(report: Report, entities: Optional[Sequence[DecodedEntity]]) -> List[str]:
    if isinstance(report, ConnectionReport):
        return [c.raw_pem for c in report.certs]
    if entities is not None:
        # source order, exact DER we decoded
        return [e.pem for e in entities]
    return ([c.raw_pem for c in report.certs] + [c.raw_pem for c in report.csrs]
            + [k.pem for k in report.public_keys if k.pem] + [k.pem for k in report.private_keys if k.pem])


def write_report(report: Report, settings: Settings, stream: TextIO, *,
                 entities: Optional[Sequence[DecodedEntity]] = None,
                 kind: Optional[str] = None,
                 theme: Optional[Theme] = None) -> None:
    """Write ``report`` to ``stream`` in the negotiated format.

    ``kind`` restricts a parse report to one of its arrays, emitted bare.
    ``entities`` gives PEM mode the original source order.
    """
    fmt = settings.output_format
    if kind and fmt is not OutputFormat.JSON:
        raise ValueError(f"kind filtering only applies to JSON output, not {fmt.value}")
    logger.debug(f"Writing {type(report).__name__} as {fmt.value}")

    if fmt is OutputFormat.JSON:
        if isinstance(report, ConnectionReport):
            payload = {"tls": report.tls, "certs": report.certs}
        elif kind:
            payload = report.kinds()[kind]
        else:
            payload = report.kinds()
        stream.write(to_json(payload, settings.include_pem))
        stream.write("\n")

    elif fmt is OutputFormat.PEM:
        for text in _pem_texts(report, entities):
            stream.write(text)

    else:
        theme = theme or Theme.for_stream(stream)
        if isinstance(report, ConnectionReport):
            render_connection_report(report, theme, stream)
        else:
            render_parse_report(report, theme, stream)
