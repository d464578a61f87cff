# src/batch/pairing.py - v1
"""Header/implementation pairing by filename stem.

A header (``.h``, ``.hpp``, ``.h++``) and an implementation file (``.cpp``,
``.cc``, ``.cxx``, ``.c++``) with the same stem form a pair. Pairing is
only meaningful inside one directory; callers group by directory first.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from autodetect.core.models import FileDescriptor

HEADER_EXTENSIONS: frozenset[str] = frozenset({".h", ".hpp", ".h++"})
IMPLEMENTATION_EXTENSIONS: frozenset[str] = frozenset({".cpp", ".cc", ".cxx", ".c++"})


@dataclass
class PairingResult:
    paired: list[tuple[FileDescriptor, FileDescriptor]] = field(default_factory=list)
    unpaired: list[FileDescriptor] = field(default_factory=list)


def split_name(name: str) -> tuple[str, str]:
    """Return (stem, lowercase extension). Dotfiles have no extension."""
    idx = name.rfind(".")
    if idx <= 0:
        return name, ""
    return name[:idx], name[idx:].lower()


def find_pairs(files: list[FileDescriptor]) -> PairingResult:
    """Separate ``files`` into header/implementation pairs and the rest.

    Pairs follow header order. Unpaired files keep input order: other
    extensions first, then unmatched headers, then unmatched
    implementations. A stem with two headers (``a.h`` and ``a.hpp``)
    pairs the last one seen; the other is kept as unpaired.
    """
    headers: dict[str, FileDescriptor] = {}
    implementations: dict[str, FileDescriptor] = {}
    result = PairingResult()

    for f in files:
        stem, ext = split_name(f.name)
        if ext in HEADER_EXTENSIONS:
            displaced = headers.pop(stem, None)
            if displaced is not None:
                result.unpaired.append(displaced)
            headers[stem] = f
        elif ext in IMPLEMENTATION_EXTENSIONS:
            displaced = implementations.pop(stem, None)
            if displaced is not None:
                result.unpaired.append(displaced)
            implementations[stem] = f
        else:
            result.unpaired.append(f)

    for stem, header in headers.items():
        impl = implementations.pop(stem, None)
        if impl is not None:
            result.paired.append((header, impl))
        else:
            result.unpaired.append(header)

    result.unpaired.extend(implementations.values())
    return result
