from netfarm.conf import Config
from netfarm.error import ConfigurationMissingError
from .base import Ledger, GLOBAL_SUBJECT
from .memory import ScalarLedger
from .storage import SQLiteLedger, UsersLedger, GlobalLedger

LEDGERS = {
    ScalarLedger.ledger_type: ScalarLedger,
    UsersLedger.ledger_type: UsersLedger,
    GlobalLedger.ledger_type: GlobalLedger,
}


def get_ledger(conf: Config) -> Ledger:
    ledger_class = LEDGERS[conf.ledger]
    if ledger_class is ScalarLedger:
        return ScalarLedger()
    if not conf.database_path:
        raise ConfigurationMissingError('database')
    if ledger_class.requires_subject and not conf.subject:
        raise ConfigurationMissingError('subject')
    return ledger_class(conf.database_path, timeout=conf.ledger_timeout)
