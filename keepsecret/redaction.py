"""
Redacted example files.

Every encrypted secret file gets an example counterpart that keeps the layout
of the original (keys, sections, comments and punctuation) with each value
replaced by a placeholder. Example files are safe to commit and document which
settings a project needs.

The redactor is picked by file extension:

\b
    .env, .ini     KEY=value lines, keeping the quote style and inline comments
    .json          string values, keeping keys, numbers and booleans
    .yaml, .yml    scalar and block values after 'key:', dropping inline comments
    .toml          quoted string values, keeping keys, headers and comments

Files with any other extension get a single comment line naming the source file.
"""

import logging
import pathlib
import re
import typing

from .errors import ExampleGenerationError

log = logging.getLogger(__name__)

PLACEHOLDER = '<placeholder>'
EXAMPLE = 'example'


class Redactor:
    def redact(self, content: str) -> str:
        raise NotImplementedError


class AssignmentRedactor(Redactor):
    """
    Redact 'KEY=value' lines as found in .env and .ini files.

    A comment character only starts a comment after whitespace, so in
    'KEY=#value' it is part of the value. Double-quoted values may span
    several lines and are replaced as a whole.
    """

    def __init__(self, comments: str = '#'):
        c = re.escape(comments)
        self.pattern = re.compile(
            r'^(?P<prefix>[ \t]*(?:export[ \t]+)?[\w.-]+[ \t]*=[ \t]*)'
            r'(?:"(?P<double>(?:[^"\\]|\\[\s\S])*)"'
            r"|'(?P<single>[^'\n]*)'"
            rf'|(?P<bare>(?:(?<==)|(?![{c}]))\S(?:[^\n]*?\S)?))'
            rf'(?P<rest>[ \t]+[{c}][^\n]*|[ \t]*)(?=\r?$)',
            re.MULTILINE)

    @staticmethod
    def replace(match: typing.Match) -> str:
        if match.group('double') is not None:
            value = f'"{PLACEHOLDER}"'
        elif match.group('single') is not None:
            value = f"'{PLACEHOLDER}'"
        else:
            value = PLACEHOLDER
        return match.group('prefix') + value + match.group('rest')

    def redact(self, content: str) -> str:
        return self.pattern.sub(self.replace, content)


class LiteralRedactor(Redactor):
    """
    Replace string literals while scanning past the text that must be kept.

    Subclasses match kept text (keys, comments, headers) in the 'keep' group
    and string literals in one of the 'quote' groups.
    """

    pattern: typing.Pattern

    @staticmethod
    def replace(match: typing.Match) -> str:
        if match.group('keep') is not None:
            return match.group('keep')
        quote = match.group('quote')
        return f"{quote}{PLACEHOLDER}{quote}"

    def redact(self, content: str) -> str:
        return self.pattern.sub(self.replace, content)


class JSONRedactor(LiteralRedactor):
    """Redact every string value, in objects and arrays alike. Keys, numbers and booleans are kept."""

    pattern = re.compile(
        r'(?P<keep>"(?:[^"\\]|\\.)*"\s*:)'
        r'|(?P<quote>")(?:[^"\\]|\\.)*"')


class TOMLRedactor(LiteralRedactor):
    """
    Redact every quoted string value, including those in arrays and inline tables.

    Table headers, comments and quoted keys are kept, as are numbers, booleans
    and dates.
    """

    pattern = re.compile(
        r'(?P<keep>^[ \t]*\[\[?[^\[\]\n,]*\]\]?(?=[ \t]*(?:#|\r?$))'
        r'|#[^\n]*'
        r'|(?:"(?:[^"\\\n]|\\.)*"|\'[^\'\n]*\')(?=[ \t]*[=.]))'
        r'|(?P<quote>"""|\'\'\')[\s\S]*?(?P=quote)'
        r'|(?P<basic>")(?:[^"\\\n]|\\.)*"'
        r"|(?P<literal>')[^'\n]*'",
        re.MULTILINE)

    @staticmethod
    def replace(match: typing.Match) -> str:
        if match.group('keep') is not None:
            return match.group('keep')
        quote = match.group('quote') or match.group('basic') or match.group('literal')
        return f"{quote}{PLACEHOLDER}{quote}"


class YAMLRedactor(Redactor):
    """
    Redact the values of 'key: value' lines and plain sequence items.

    Block scalars ('key: |' and 'key: >') and multi-line scalars are collapsed
    into a single placeholder. Keys that open a nested mapping or sequence, and
    values that are only an anchor, alias or tag, are kept.
    """

    mapping = re.compile(
        r'^(?P<indent>[ \t]*)(?P<item>-[ \t]+)?'
        r'(?P<key>[^\s#\'"\-][^:#\n]*?|"[^"\n]*"|\'[^\'\n]*\')'
        r'(?P<colon>[ \t]*:)(?:(?P<space>[ \t]+)(?P<value>.*?))?[ \t]*$')
    item = re.compile(r'^(?P<indent>[ \t]*)(?P<item>-[ \t]+)(?P<value>\S.*?)[ \t]*$')
    reference = re.compile(r'^[&*!]\S*$')

    def redact(self, content: str) -> str:
        lines: typing.List[str] = []
        skip: typing.Optional[int] = None
        blanks: typing.List[str] = []

        for line in content.splitlines(keepends=True):
            text = line.rstrip('\r\n')
            ending = line[len(text):]

            if skip is not None:
                if not text.strip():
                    blanks.append(line)
                    continue
                if len(text) - len(text.lstrip()) > skip:
                    blanks = []
                    continue
                lines.extend(blanks)
                blanks, skip = [], None

            redacted, skip = self.redact_line(text)
            lines.append(redacted + ending)

        lines.extend(blanks)
        return ''.join(lines)

    def redact_line(self, text: str) -> typing.Tuple[str, typing.Optional[int]]:
        """Redact one line, returning the indent below which following lines are part of its value."""
        match = self.mapping.match(text)
        if match:
            value = match.group('value')
            if not value or value.startswith('#') or self.reference.match(value):
                return text, None
            prefix = text[:match.end('space')]
            return prefix + PLACEHOLDER, len(match.group('indent')) + len(match.group('item') or '')

        match = self.item.match(text)
        if match and not match.group('value').startswith('#'):
            return match.group('indent') + match.group('item') + PLACEHOLDER, len(match.group('indent'))

        return text, None


ENV = AssignmentRedactor('#')
INI = AssignmentRedactor('#;')

REDACTORS: typing.Dict[str, Redactor] = {
    '.env': ENV,
    '.ini': INI,
    '.json': JSONRedactor(),
    '.yaml': YAMLRedactor(),
    '.yml': YAMLRedactor(),
    '.toml': TOMLRedactor(),
}


def extension(path: pathlib.Path) -> str:
    """The text after the last dot, so that '.env' has the extension '.env'."""
    name = path.name
    index = name.rfind('.')
    return name[index:].lower() if index >= 0 else ''


def redactor_for(path: pathlib.Path) -> typing.Optional[Redactor]:
    if path.name.lower().startswith('.env.'):
        return ENV
    return REDACTORS.get(extension(path))


def example_path(path: pathlib.Path) -> pathlib.Path:
    """
    Name the example file for a secret file.

    'config.yaml' becomes 'config.example.yaml' and '.config.yaml' becomes
    '.config.example.yaml'. Dotfiles without a further extension, such as
    '.env', become '.env.example'.
    """
    name = path.name
    parts = name.split('.', 2)
    if name.startswith('.') and len(parts) == 3 and parts[1] and parts[2]:
        return path.with_name(f".{parts[1]}.{EXAMPLE}.{parts[2]}")
    return path.with_name(f"{path.stem}.{EXAMPLE}{path.suffix}")


def render(path: pathlib.Path, content: str) -> str:
    redactor = redactor_for(path)
    if redactor is None:
        return f"# Example file for {path.name}\n"
    return redactor.redact(content)


class ExampleGenerator:
    def generate(self, path: pathlib.Path) -> pathlib.Path:
        output = example_path(path)
        log.debug(f"Writing example for {path} to {output}")

        try:
            content = path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as error:
            raise ExampleGenerationError(path, str(error))

        try:
            output.write_text(render(path, content), encoding='utf-8')
        except OSError as error:
            raise ExampleGenerationError(path, str(error))

        return output
