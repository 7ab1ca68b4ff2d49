"""
Each Incantation can be converted to a list of files to encrypt or decrypt.
"""

import logging
import pathlib
import typing

import attr

from .redaction import EXAMPLE

log = logging.getLogger(__name__)

Paths = typing.Sequence[pathlib.Path]


class Incantation:
    def search(self, directory: pathlib.Path) -> Paths:
        raise NotImplementedError


@attr.s(frozen=True)
class PatternIncantation(Incantation):
    """
    Search a directory for files matching the project's glob patterns.

    Files are returned in pattern order, sorted within each pattern, and each
    file is only returned once.
    """

    patterns: typing.Tuple[str, ...] = attr.ib(converter=tuple)
    suffix: str = attr.ib(default='.gpg')

    def search(self, directory: pathlib.Path) -> Paths:
        log.info(f"Searching for files in {directory}")
        found: typing.Dict[pathlib.Path, None] = {}

        for pattern in self.expand():
            matches = [p for p in self.files(directory, pattern) if self.select(p)]
            log.info(f"Pattern {pattern!r} matched {len(matches)} files")
            for path in matches:
                found.setdefault(path, None)

        log.info(f"Search found {len(found)} files in {directory}")
        return tuple(found)

    def expand(self) -> typing.Sequence[str]:
        return self.patterns

    def select(self, path: pathlib.Path) -> bool:
        return True

    @staticmethod
    def files(directory: pathlib.Path, pattern: str) -> Paths:
        return tuple(sorted(p for p in directory.glob(pattern) if p.is_file()))


class PlaintextIncantation(PatternIncantation):
    """Selects plaintext secret files, skipping ciphertext and generated example files."""

    def select(self, path: pathlib.Path) -> bool:
        return not path.name.endswith(self.suffix) and f'.{EXAMPLE}' not in path.name


class EncryptedIncantation(PatternIncantation):
    """Selects ciphertext by appending the ciphertext suffix to each pattern."""

    def expand(self) -> typing.Sequence[str]:
        return tuple(pattern + self.suffix for pattern in self.patterns)
