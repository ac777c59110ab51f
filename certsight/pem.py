#
# hunt for BEGIN/END armored blocks in whatever bytes we were handed
#

import base64
import binascii
import logging
import re
import textwrap
from dataclasses import dataclass
from typing import Iterator, Tuple, Union

from .errors import DecodeError

logger = logging.getLogger(__name__)

# Label comes from the BEGIN line only; the END label is not compared.
# A single optional (real or escaped) newline may hug each marker.
PEM_RE = re.compile(
    rb"-----BEGIN (?P<label>[^\r\n]*?)-----(?:\r?\n|\\n)?(?P<body>.*?)(?:\r?\n|\\n)?-----END [^\r\n]*?-----",
    re.DOTALL,
)

# whitespace plus literal two-char "\n" escapes (PEMs pasted into JSON strings)
STRIP_RE = re.compile(rb"(?:\s|\\n)+")


@dataclass(frozen=True)
class RawPemBlock:
    """One armored block: where it sat in the source, its label, its DER."""
    span:       Tuple[int, int]
    label:      str
    payload:    bytes


def has_pem_markers(data: bytes) -> bool:
    return PEM_RE.search(data) is not None


def scan_pem_blocks(data: bytes) -> Iterator[Union[RawPemBlock, DecodeError]]:
    """Yield every PEM block found in ``data``, in source order.

    A block whose payload is not valid base64 is yielded as a DecodeError
    instead of a RawPemBlock, so one bad block never hides the others.
    """
    for match in PEM_RE.finditer(data):
        span = match.span()
        label = match.group("label").decode("ascii", errors="replace").strip()
        cleaned = STRIP_RE.sub(b"", match.group("body"))

        try:
            payload = base64.b64decode(cleaned, validate=True)
        except (binascii.Error, ValueError) as e:
            logger.debug(f"Bad base64 in '{label}' block at {span}: {e}")
            yield DecodeError(f"invalid base64 payload: {e}", span=span, label=label)
            continue

        yield RawPemBlock(span=span, label=label, payload=payload)


def armor(label: str, der: bytes) -> str:
    """Wrap DER bytes back into PEM text under ``label``."""
    body = "\n".join(textwrap.wrap(base64.b64encode(der).decode("ascii"), 64))
    return f"-----BEGIN {label}-----\n{body}\n-----END {label}-----\n"
