"""
Interactive input, kept behind a small interface so the key and file
operations never touch terminal state themselves.
"""

import sys
import typing

import click


class Prompt:
    def secret(self, text: str) -> str:
        """Read a passphrase."""
        raise NotImplementedError

    def confirm(self, text: str, default: bool = False) -> bool:
        raise NotImplementedError


class TerminalPrompt(Prompt):
    """Read without echo when attached to a terminal, otherwise read a line."""

    def __init__(self, stdin: typing.TextIO = None):
        self.stdin = stdin or sys.stdin

    def secret(self, text: str) -> str:
        if self.stdin.isatty():
            return click.prompt(text, hide_input=True, default='', show_default=False)
        click.echo(f"{text}: ", nl=False, err=True)
        return self.stdin.readline().rstrip('\r\n')

    def confirm(self, text: str, default: bool = False) -> bool:
        return click.confirm(text, default=default)
