from enum import Enum


class ImportMode(str, Enum):
    FULL = 'full'       # start of current month, every page
    RECENT = 'recent'   # trailing window, one bounded page


class ImportState(str, Enum):
    IDLE = 'idle'
    LISTING = 'listing'
    FETCHING = 'fetching'
    EXTRACTING = 'extracting'
    PERSISTING = 'persisting'
    FAILED = 'failed'


class TransactionSource(str, Enum):
    MANUAL = 'manual'
    IMPORTED = 'external-import'


# Display name when neither a recipient nor a subject could be found
DEFAULT_TRANSACTION_NAME = 'Gmail import'
