"""
The project configuration binds a project name, its key and its secret files.

It is stored as YAML in '.secret/config.yaml' inside the project directory.
"""

import logging
import pathlib
import typing

import attr
import yaml

from .errors import ConfigError
from .utils import ensure_directory, slug, write_private

log = logging.getLogger(__name__)

KEY_DIRECTORY = '.secret'
CONFIG_NAME = 'config.yaml'
PUBLIC_KEY_NAME = 'public.asc'
PRIVATE_KEY_NAME = 'private.asc'
DEFAULT_SECRET_DIR = '.secrets'
BACKUP_NAME = 'backup'

DEFAULT_SECRET_FILES: typing.Tuple[str, ...] = ('.env', 'dev.env', 'config.json', '.config.yaml')

FIELDS = ('backend', 'gpg_key', 'project_name', 'secret_files', 'secret_dir')


def _patterns(value: typing.Optional[typing.Iterable[str]]) -> typing.Tuple[str, ...]:
    """Secret file patterns are a list of globs relative to the project directory."""
    if not value:
        return DEFAULT_SECRET_FILES
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"secret_files should be a list of glob patterns, not {value!r}")

    patterns = tuple(str(pattern).strip() for pattern in value if str(pattern).strip())
    for pattern in patterns:
        if pathlib.PurePath(pattern).is_absolute():
            raise ConfigError(f"secret_files pattern {pattern!r} should be relative to the project directory")
    return patterns


@attr.s(frozen=True, kw_only=True)
class ProjectConfig:
    backend: str = attr.ib(default='gpg')
    gpg_key: typing.Optional[str] = attr.ib(default=None)
    project_name: typing.Optional[str] = attr.ib(default=None)
    secret_files: typing.Tuple[str, ...] = attr.ib(default=DEFAULT_SECRET_FILES, converter=_patterns)
    secret_dir: typing.Optional[str] = attr.ib(default=None)

    @property
    def slug(self) -> str:
        return slug(self.project_name)

    def backup_directory(self, directory: pathlib.Path) -> pathlib.Path:
        return directory / (self.secret_dir or DEFAULT_SECRET_DIR) / BACKUP_NAME

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        data: typing.Dict[str, typing.Any] = {'backend': self.backend}
        if self.gpg_key:
            data['gpg_key'] = self.gpg_key
        if self.project_name:
            data['project_name'] = self.project_name
        data['secret_files'] = list(self.secret_files)
        if self.secret_dir:
            data['secret_dir'] = self.secret_dir
        return data

    @classmethod
    def from_dict(cls, data: typing.Mapping[str, typing.Any]) -> 'ProjectConfig':
        unknown = set(data) - set(FIELDS)
        if unknown:
            log.warning(f"Ignoring unknown config fields: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in FIELDS and v is not None})


@attr.s(frozen=True)
class ConfigStore:
    """Reads and writes the project config and knows where key material lives."""

    directory: pathlib.Path = attr.ib(factory=pathlib.Path.cwd)

    @property
    def key_directory(self) -> pathlib.Path:
        return self.directory / KEY_DIRECTORY

    @property
    def path(self) -> pathlib.Path:
        return self.key_directory / CONFIG_NAME

    @property
    def public_key(self) -> pathlib.Path:
        return self.key_directory / PUBLIC_KEY_NAME

    @property
    def private_key(self) -> pathlib.Path:
        return self.key_directory / PRIVATE_KEY_NAME

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> ProjectConfig:
        log.debug(f"Loading config from {self.path}")
        try:
            text = self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            raise ConfigError(
                f"Project is not initialised: {self.path} does not exist",
                hints=["secret init"])
        except OSError as error:
            raise ConfigError(f"Could not read {self.path}: {error}")

        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as error:
            raise ConfigError(f"Could not parse {self.path}: {error}")

        if not isinstance(data, dict):
            raise ConfigError(f"{self.path} should contain a mapping")

        return ProjectConfig.from_dict(data)

    def load_or_default(self) -> ProjectConfig:
        """Load the config, or describe the project by its directory name."""
        if self.exists():
            return self.load()
        log.info(f"No config at {self.path}, using defaults")
        return ProjectConfig(project_name=self.directory.resolve().name)

    def save(self, config: ProjectConfig) -> ProjectConfig:
        log.debug(f"Saving config to {self.path}")
        try:
            ensure_directory(self.key_directory)
            write_private(self.path, yaml.safe_dump(
                config.to_dict(), sort_keys=False, default_flow_style=False))
        except OSError as error:
            raise ConfigError(f"Could not write {self.path}: {error}")
        return config
