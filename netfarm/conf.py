import os
import typing
import logging
from argparse import ArgumentParser
from appdirs import user_data_dir
import yaml

from netfarm.error import ConfigurationInvalidError

log = logging.getLogger(__name__)


NOT_SET = type('NOT_SET', (object,), {})  # pylint: disable=invalid-name
T = typing.TypeVar('T')

LEDGER_TYPES = ['memory', 'users', 'global']


class Setting(typing.Generic[T]):

    def __init__(self, doc: str, default: typing.Optional[T] = None, metavar: typing.Optional[str] = None):
        self.doc = doc
        self.default = default
        self.metavar = metavar

    def __set_name__(self, owner, name):
        self.name = name  # pylint: disable=attribute-defined-outside-init

    @property
    def cli_name(self):
        return f"--{self.name.replace('_', '-')}"

    @property
    def env_name(self):
        return f"{EnvironmentSource.PREFIX}{self.name.upper()}"

    def __get__(self, obj: typing.Optional['BaseConfig'], owner) -> T:
        if obj is None:
            return self
        for source in obj.search_order:
            if self.name in source:
                return source[self.name]
        return self.default

    def __set__(self, obj: 'BaseConfig', val: typing.Union[T, NOT_SET]):
        # assignments only ever land in the runtime layer
        if val == NOT_SET:
            obj.runtime.pop(self.name, None)
        else:
            self.validate(val)
            obj.runtime[self.name] = val

    def validate(self, value):
        raise NotImplementedError()

    def deserialize(self, value):  # pylint: disable=no-self-use
        return value

    def contribute_to_argparse(self, parser: ArgumentParser):
        parser.add_argument(
            self.cli_name,
            help=self.doc,
            metavar=self.metavar,
            default=NOT_SET
        )


class String(Setting[str]):
    def validate(self, value):
        assert isinstance(value, str), \
            f"Setting '{self.name}' must be a string."


class Integer(Setting[int]):
    def validate(self, value):
        assert isinstance(value, int) and not isinstance(value, bool), \
            f"Setting '{self.name}' must be an integer."

    def deserialize(self, value):
        return int(value)


class NonNegativeInteger(Integer):
    def validate(self, value):
        super().validate(value)
        assert value >= 0, \
            f"Setting '{self.name}' must not be negative."


class Float(Setting[float]):
    def validate(self, value):
        assert isinstance(value, float), \
            f"Setting '{self.name}' must be a decimal."

    def deserialize(self, value):
        return float(value)


class Path(String):
    def __init__(self, doc: str, default: str = '', **kwargs):
        super().__init__(doc, default, **kwargs)

    def __get__(self, obj, owner) -> str:
        value = super().__get__(obj, owner)
        if isinstance(value, str):
            return os.path.expanduser(os.path.expandvars(value))
        return value


class HostPort(String):
    """ A `HOST:PORT` pair, the host may be empty to listen on every address. """

    @staticmethod
    def split(value: str) -> typing.Tuple[str, int]:
        host, sep, port = value.rpartition(':')
        if not sep or not port.isdigit():
            raise ValueError(f"'{value}' is not in HOST:PORT form")
        return host, int(port)

    def validate(self, value):
        super().validate(value)
        _, port = self.split(value)
        assert port <= 65535, \
            f"Setting '{self.name}' port must be between 0 and 65535."


class StringChoice(String):
    def __init__(self, doc: str, valid_values: typing.List[str], default: str, **kwargs):
        super().__init__(doc, default, **kwargs)
        if not valid_values:
            raise ValueError("No valid values provided")
        if default not in valid_values:
            raise ValueError(f"Default value must be one of: {', '.join(valid_values)}")
        self.valid_values = valid_values

    def validate(self, value):
        super().validate(value)
        if value not in self.valid_values:
            raise ValueError(f"Setting '{self.name}' value must be one of: {', '.join(self.valid_values)}")

    def contribute_to_argparse(self, parser: ArgumentParser):
        parser.add_argument(
            self.cli_name,
            help=self.doc,
            choices=self.valid_values,
            default=NOT_SET
        )


class SettingsSource:
    """
    Read-only layer of raw setting values, deserialized on load.
    """

    def __init__(self, config: 'BaseConfig'):
        self.configuration = config
        self.data = {}

    def __contains__(self, item: str):
        return item in self.data

    def __getitem__(self, item: str):
        return self.data[item]


class ArgumentSource(SettingsSource):

    def __init__(self, config: 'BaseConfig', args):
        super().__init__(config)
        for setting in config.get_settings():
            value = getattr(args, setting.name, NOT_SET)
            if value != NOT_SET:
                self.data[setting.name] = setting.deserialize(value)


class EnvironmentSource(SettingsSource):
    PREFIX = 'NETFARM_'

    def __init__(self, config: 'BaseConfig', environ: typing.Mapping[str, str]):
        super().__init__(config)
        for setting in config.get_settings():
            if setting.env_name in environ:
                self.data[setting.name] = setting.deserialize(environ[setting.env_name])


class YAMLFileSource(SettingsSource):

    def __init__(self, config: 'BaseConfig', path: str):
        super().__init__(config)
        self.path = path
        if self.exists:
            self.load()

    @property
    def exists(self):
        return bool(self.path) and os.path.exists(self.path)

    def load(self):
        settings = {setting.name: setting for setting in self.configuration.get_settings()}
        with open(self.path, 'r') as config_file:
            try:
                serialized = yaml.safe_load(config_file) or {}
            except yaml.YAMLError as err:
                raise ConfigurationInvalidError('config', f"{self.path} is not valid YAML: {err}") from err
        if not isinstance(serialized, dict):
            raise ConfigurationInvalidError('config', f"{self.path} must contain a mapping of settings")
        for key, value in serialized.items():
            if key in settings:
                self.data[key] = settings[key].deserialize(value)
            else:
                log.warning("ignoring unknown setting '%s' in %s", key, self.path)


TBC = typing.TypeVar('TBC', bound='BaseConfig')


class BaseConfig:

    config = Path("Path to configuration file.", metavar='FILE')

    def __init__(self, **kwargs):
        self.runtime = {}      # set internally or by tests
        self.arguments = {}    # from command line arguments
        self.environment = {}  # from environment variables
        self.persisted = {}    # from config file
        for key, value in kwargs.items():
            setattr(self, key, value)

    @property
    def search_order(self):
        return [
            self.runtime,
            self.arguments,
            self.environment,
            self.persisted
        ]

    @classmethod
    def get_settings(cls):
        for attr in dir(cls):
            setting = getattr(cls, attr)
            if isinstance(setting, Setting):
                yield setting

    @property
    def settings(self):
        return self.get_settings()

    @property
    def settings_dict(self):
        return {
            setting.name: getattr(self, setting.name) for setting in self.settings
        }

    def validate(self):
        for setting in self.settings:
            value = getattr(self, setting.name)
            if value is None:
                continue
            try:
                setting.validate(value)
            except (AssertionError, ValueError) as err:
                raise ConfigurationInvalidError(setting.name, err) from err

    @classmethod
    def create_from_arguments(cls, args) -> TBC:
        conf = cls()
        conf.set_arguments(args)
        conf.set_environment()
        conf.set_persisted()
        return conf

    @classmethod
    def contribute_to_argparse(cls, parser: ArgumentParser):
        for setting in cls.get_settings():
            setting.contribute_to_argparse(parser)

    def set_arguments(self, args):
        self.arguments = ArgumentSource(self, args)

    def set_environment(self, environ=None):
        self.environment = EnvironmentSource(self, os.environ if environ is None else environ)

    def set_persisted(self, config_file_path=None):
        if config_file_path is None:
            config_file_path = self.config
        if not config_file_path:
            return
        ext = os.path.splitext(config_file_path)[1]
        if ext not in ('.yml', '.yaml'):
            raise ConfigurationInvalidError(
                'config', f"file extension '{ext}' is not supported, configuration file must be YAML (.yml)"
            )
        self.persisted = YAMLFileSource(self, config_file_path)


class CLIConfig(BaseConfig):

    api = HostPort('Host name and port for the netfarm status API.', '0.0.0.0:8080', metavar='HOST:PORT')

    @property
    def api_connection_url(self) -> str:
        host = self.api_host
        if host in ('0.0.0.0', ''):
            host = 'localhost'
        return f"http://{host}:{self.api_port}/stats"

    @property
    def api_host(self) -> str:
        return HostPort.split(self.api)[0]

    @property
    def api_port(self) -> int:
        return HostPort.split(self.api)[1]


class Config(CLIConfig):

    data_dir = Path("Directory path to store the points database and logs.", metavar='DIR')

    threshold = NonNegativeInteger(
        "Unused bandwidth, in bytes per tick, that must be exceeded before points are earned.", 1024
    )
    tick_interval = Float("Seconds between two network samples.", 30.0)
    ledger = StringChoice(
        "Where points are kept: a single in-memory counter, one database row per user, "
        "or one global database row.", LEDGER_TYPES, 'memory'
    )
    subject = String("User name the points are credited to when using the 'users' ledger.", 'testuser')
    database = Path("Path to the SQLite points database, defaults to $data_dir/netfarm.db.", metavar='FILE')
    ledger_timeout = Float("Timeout when reading or updating the points database.", 5.0)
    allowed_origin = String(
        "Allowed `Origin` header value for API requests (sent by browser based clients)", ""
    )
    prometheus_port = Integer("Port to expose prometheus metrics (off by default)", 0)

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.set_default_paths()

    def set_default_paths(self):
        cls = type(self)
        cls.data_dir.default = data_dir = get_data_directory()
        cls.config.default = os.path.join(data_dir, 'netfarm_settings.yml')

    @property
    def database_path(self) -> str:
        return self.database or os.path.join(self.data_dir, 'netfarm.db')

    @property
    def log_file_path(self):
        return os.path.join(self.data_dir, 'netfarm.log')


def get_data_directory() -> str:
    return user_data_dir('netfarm', 'netfarm')
