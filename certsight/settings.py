import os
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import pydantic


# 10 megs... plenty for a bundle of PEMs
MAX_FILE_SIZE = 1024 * 1024 * 10

# hybrid groups pinned by --pqc, in preference order
PQC_GROUPS = ("X25519MLKEM768", "X25519Kyber768Draft00")


class OutputFormat(Enum):
    JSON = "json"
    TEXT = "text"
    PEM  = "pem"


class Settings(pydantic.BaseModel):
    """Settings for one invocation (one file/stdin or one host)."""
    verbose:        int  = 0
    debug:          bool = False
    output_format:  OutputFormat = OutputFormat.JSON
    include_pem:    bool = True
    max_file_size:  int  = MAX_FILE_SIZE

    # parse only
    kind:           Optional[str] = None

    # connect only
    chain:          bool = False
    rpk:            bool = False
    curves:         Optional[str] = None
    pqc:            bool = False
    timeout:        Optional[float] = None

    @pydantic.field_validator("curves")
    @classmethod
    def _curves_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip(" :"):
            raise ValueError("curve list is empty")
        return value

    @pydantic.field_validator("timeout")
    @classmethod
    def _timeout_positive(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("timeout must be positive")
        return value

    @pydantic.field_validator("max_file_size")
    @classmethod
    def _size_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_file_size must be positive")
        return value

    @pydantic.model_validator(mode="after")
    def _curves_xor_pqc(self) -> "Settings":
        if self.pqc and self.curves:
            raise ValueError("--pqc and --curves are mutually exclusive")
        return self

    @pydantic.model_validator(mode="after")
    def _kind_needs_json(self) -> "Settings":
        if self.kind and self.output_format is not OutputFormat.JSON:
            raise ValueError(f"--kind only applies to JSON output, not {self.output_format.value}")
        return self

    def groups(self) -> Optional[List[str]]:
        """Key exchange groups to offer, or None for the library defaults."""
        if self.pqc:
            return list(PQC_GROUPS)
        if self.curves:
            return [g.strip() for g in self.curves.split(":") if g.strip()]
        return None


@dataclass(frozen=True)
class Theme:
    """Colours for the text renderer, handed to it explicitly."""
    top_level:  str = "\033[34m"
    highlight:  str = "\033[36m"
    index:      str = "\033[35m"
    good:       str = "\033[32m"
    bad:        str = "\033[31m"
    reset:      str = "\033[0m"
    enabled:    bool = True

    @classmethod
    def for_stream(cls, stream) -> "Theme":
        isatty = getattr(stream, "isatty", None)
        enabled = bool(isatty and isatty()) and "NO_COLOR" not in os.environ
        return cls(enabled=enabled)

    def paint(self, text: str, color: str) -> str:
        if not self.enabled:
            return text
        return f"{color}{text}{self.reset}"
