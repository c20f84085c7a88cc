# ipfunctions.py - set-ipconfig Core Functions Library
# Version 1.0 - October 2026
# Records, run context, logging, config helpers and command execution
# shared by setipconfig.py and the Tools modules

import os
import sys
import csv
import logging
import platform
import subprocess
import tempfile
import ipaddress
from dataclasses import dataclass, field
from typing import Optional, Dict, List
from configparser import ConfigParser

#==============================================================================
# STATIC VARIABLES
#==============================================================================

if platform.system() == 'Windows':
    default_record_dir = r'C:\ProgramData\set-ipconfig'
else:
    default_record_dir = '/var/lib/set-ipconfig'

configname = 'config.ini'
logfile = 'set-ipconfig.log'
statusfile = 'status.txt'
config_section = 'SETIPCONFIG'

# Record names map to one CSV file each in the record directory
CURRENT = 'ipconfig'
PREVIOUS = 'previous_ipconfig'
DR_OVERRIDE = 'dr_ipconfig'
RECORD_NAMES = (CURRENT, PREVIOUS, DR_OVERRIDE)

# Column order matches Export-Csv output of the Windows NetTCPIP objects
RECORD_FIELDS = [
    'IPAddress',
    'PrefixLength',
    'IPv4DefaultGateway',
    'PrimaryDNSServer',
    'SecondaryDNSServer',
]

DEFAULT_SETTLE_SECONDS = 5

#==============================================================================
# ERRORS
#==============================================================================

class IPConfigError(Exception):
    """Base class for every fatal condition of a run"""


class NoActiveInterface(IPConfigError):
    """No network interface reports link up"""


class AmbiguousInterface(IPConfigError):
    """More than one network interface reports link up"""


class NoHistoryForDrDecision(IPConfigError):
    """A DR override exists but there is no previous snapshot to compare with"""


class UnknownPreviousState(IPConfigError):
    """The previous snapshot matches neither the production nor the DR address"""


class NoSavedConfigForDhcp(IPConfigError):
    """Interface is on DHCP and there is no saved static configuration"""


class RecordParseError(IPConfigError):
    """A persisted record is missing fields or holds invalid values"""


class RecordWriteError(IPConfigError):
    """A record could not be written to the record directory"""


class InterfaceQueryError(IPConfigError):
    """The live interface configuration could not be read"""


class ApplyConfigError(IPConfigError):
    """The platform refused to apply an address record"""

#==============================================================================
# ADDRESS RECORD
#==============================================================================

def _check_ipv4(value: str, name: str) -> str:
    try:
        return str(ipaddress.IPv4Address(value))
    except (ipaddress.AddressValueError, ValueError):
        raise RecordParseError(f'{name} is not a valid IPv4 address: {value!r}')


@dataclass(frozen=True)
class AddressRecord:
    """
    One IPv4 configuration: address, prefix, default gateway and up to two
    DNS servers. Only the address takes part in state comparisons.
    """
    address: str
    prefix_length: int
    gateway: Optional[str] = None
    primary_dns: Optional[str] = None
    secondary_dns: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'address', _check_ipv4(self.address, 'IPAddress'))

        try:
            prefix = int(self.prefix_length)
        except (TypeError, ValueError):
            raise RecordParseError(f'PrefixLength is not an integer: {self.prefix_length!r}')
        if not 0 <= prefix <= 32:
            raise RecordParseError(f'PrefixLength out of range 0-32: {prefix}')
        object.__setattr__(self, 'prefix_length', prefix)

        for attr, name in (('gateway', 'IPv4DefaultGateway'),
                           ('primary_dns', 'PrimaryDNSServer'),
                           ('secondary_dns', 'SecondaryDNSServer')):
            value = getattr(self, attr)
            if value is not None and str(value).strip() == '':
                value = None
            if value is not None:
                value = _check_ipv4(str(value).strip(), name)
            object.__setattr__(self, attr, value)

    @property
    def dns_servers(self) -> List[str]:
        return [d for d in (self.primary_dns, self.secondary_dns) if d]

    def same_address(self, other: Optional['AddressRecord']) -> bool:
        return other is not None and self.address == other.address

    def to_row(self) -> Dict[str, str]:
        return {
            'IPAddress': self.address,
            'PrefixLength': str(self.prefix_length),
            'IPv4DefaultGateway': self.gateway or '',
            'PrimaryDNSServer': self.primary_dns or '',
            'SecondaryDNSServer': self.secondary_dns or '',
        }

    @classmethod
    def from_row(cls, row: Dict[str, str]) -> 'AddressRecord':
        missing = [f for f in ('IPAddress', 'PrefixLength') if not (row.get(f) or '').strip()]
        if missing:
            raise RecordParseError(f'Record is missing required fields: {", ".join(missing)}')
        return cls(
            address=row['IPAddress'].strip(),
            prefix_length=row['PrefixLength'].strip(),
            gateway=row.get('IPv4DefaultGateway'),
            primary_dns=row.get('PrimaryDNSServer'),
            secondary_dns=row.get('SecondaryDNSServer'),
        )

    @classmethod
    def from_dns_list(cls, address, prefix_length, gateway=None, dns=None) -> 'AddressRecord':
        """Build a record from a DNS server list as reported by the OS"""
        dns = list(dns or [])
        return cls(
            address=address,
            prefix_length=prefix_length,
            gateway=gateway,
            primary_dns=dns[0] if len(dns) > 0 else None,
            secondary_dns=dns[1] if len(dns) > 1 else None,
        )

    def __str__(self):
        dns = ','.join(self.dns_servers) or 'none'
        return f'{self.address}/{self.prefix_length} gw {self.gateway or "none"} dns {dns}'

#==============================================================================
# RECORD STORE
#==============================================================================

class RecordStore:
    """
    File-backed key-value slots, one CSV file per record name.
    Presence of the file means the record exists.
    """

    def __init__(self, record_dir: str):
        self.record_dir = record_dir

    def path(self, name: str) -> str:
        if name not in RECORD_NAMES:
            raise KeyError(f'Unknown record name: {name}')
        return os.path.join(self.record_dir, f'{name}.csv')

    def exists(self, name: str) -> bool:
        return os.path.isfile(self.path(name))

    def load(self, name: str) -> Optional[AddressRecord]:
        """
        Read a record, returning None when the file does not exist

        :param name: one of CURRENT, PREVIOUS, DR_OVERRIDE
        :return: AddressRecord or None
        """
        filepath = self.path(name)
        if not os.path.isfile(filepath):
            return None

        try:
            with open(filepath, 'r', newline='', encoding='utf-8-sig') as f:
                # Export-Csv without -NoTypeInformation writes a #TYPE line first
                lines = [line for line in f if line.strip() and not line.startswith('#')]
            rows = list(csv.DictReader(lines))
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise RecordParseError(f'Cannot read {filepath}: {e}')

        if len(rows) != 1:
            raise RecordParseError(f'{filepath} must hold exactly one record, found {len(rows)}')

        try:
            return AddressRecord.from_row(rows[0])
        except RecordParseError as e:
            raise RecordParseError(f'{filepath}: {e}')

    def save(self, name: str, record: AddressRecord):
        """Replace a record file atomically"""
        filepath = self.path(name)
        tmp_path = None

        try:
            os.makedirs(self.record_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f'.{name}.', suffix='.tmp', dir=self.record_dir)
            with os.fdopen(fd, 'w', newline='', encoding='utf-8') as f:
                writer = csv.DictWriter(f, fieldnames=RECORD_FIELDS, quoting=csv.QUOTE_ALL)
                writer.writeheader()
                writer.writerow(record.to_row())
            os.replace(tmp_path, filepath)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise RecordWriteError(f'Cannot write {filepath}: {e}')

#==============================================================================
# RUN CONTEXT
#==============================================================================

@dataclass
class RunContext:
    """
    Everything one invocation needs: where the records live, the parsed
    config, the logger, and whether changes are allowed.
    """
    record_dir: str
    config: ConfigParser = field(default_factory=ConfigParser)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger('setipconfig'))
    dry_run: bool = False

    @property
    def store(self) -> RecordStore:
        return RecordStore(self.record_dir)

    @property
    def status_file(self) -> str:
        return get_config_value(self.config, config_section, 'status_file',
                                os.path.join(self.record_dir, statusfile))

    @property
    def settle_seconds(self) -> int:
        value = get_config_value(self.config, config_section, 'settle_seconds')
        if not value:
            return DEFAULT_SETTLE_SECONDS
        try:
            return int(value)
        except ValueError:
            self.write_output(f'WARNING: settle_seconds is not an integer: {value}')
            return DEFAULT_SETTLE_SECONDS

    def write_output(self, msg, level=logging.INFO):
        self.logger.log(level, msg)


def setup_logging(record_dir: str, config: ConfigParser = None, verbose: bool = False) -> logging.Logger:
    """
    Configure the run logger with a log file and console handler

    :param record_dir: directory holding the records (default log location)
    :param config: parsed config, 'logfile' overrides the log location
    :param verbose: log DEBUG messages too
    :return: configured logger
    """
    logger = logging.getLogger('setipconfig')
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter('[%(asctime)s] %(message)s', datefmt='%Y-%m-%d %H:%M:%S')

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    lfile = get_config_value(config, config_section, 'logfile', os.path.join(record_dir, logfile))
    try:
        os.makedirs(os.path.dirname(lfile) or '.', exist_ok=True)
        file_handler = logging.FileHandler(lfile, mode='a', encoding='utf-8')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        logger.warning(f'Cannot open log file {lfile}: {e}')

    return logger

#==============================================================================
# CONFIG HELPER FUNCTIONS
#==============================================================================

def load_config(record_dir: str, config_file: str = None) -> ConfigParser:
    """
    Read config.ini from the given file or from the record directory

    A missing file yields an empty config; every option has a default.
    """
    config = ConfigParser()
    path = config_file or os.path.join(record_dir, configname)
    if os.path.isfile(path):
        config.read(path)
    return config


def get_config_value(config: Optional[ConfigParser], section: str, option: str, fallback: str = '') -> str:
    """
    Get a config option value, returning fallback if commented out.

    If the value itself starts with '#' or ';', it's treated as if
    the option doesn't exist.
    """
    if config is None or not config.has_option(section, option):
        return fallback

    value = config.get(section, option).strip()

    if not value or value.startswith('#') or value.startswith(';'):
        return fallback

    return value


def get_config_list(config: Optional[ConfigParser], section: str, option: str, fallback: list = None) -> list:
    """
    Get a config option as a list, filtering out commented lines.

    Multiline values are split on newlines, single-line values on commas.
    """
    if fallback is None:
        fallback = []

    if config is None or not config.has_option(section, option):
        return fallback

    raw_value = config.get(section, option)
    if not raw_value:
        return fallback

    if '\n' in raw_value:
        lines = raw_value.split('\n')
    else:
        lines = raw_value.split(',')

    result = []
    for line in lines:
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith('#') or stripped.startswith(';'):
            continue
        result.append(stripped)

    return result

#==============================================================================
# COMMAND EXECUTION
#==============================================================================

def run_command(cmd, **kwargs):
    """
    Execute a command without raising

    :param cmd: Command string or list
    :param kwargs: timeout, shell, capture_output, logger
    :return: subprocess.CompletedProcess (returncode 1 on timeout or launch failure)
    """
    timeout = kwargs.get('timeout', 120)
    shell = kwargs.get('shell', isinstance(cmd, str))
    capture = kwargs.get('capture_output', True)
    logger = kwargs.get('logger') or logging.getLogger('setipconfig')

    try:
        return subprocess.run(
            cmd,
            shell=shell,
            capture_output=capture,
            text=True,
            timeout=timeout
        )
    except subprocess.TimeoutExpired:
        logger.warning(f'Command timed out: {cmd}')
        return subprocess.CompletedProcess(cmd, 1, '', 'Timeout')
    except OSError as e:
        logger.warning(f'Command failed: {cmd} - {e}')
        return subprocess.CompletedProcess(cmd, 1, '', str(e))

#==============================================================================
# RUN STATUS AND FAILURE
#==============================================================================

def write_status(ctx: RunContext, message: str, status: str):
    """
    Write the one-line run status file. Dry runs leave it untouched.

    :param message: Status message
    :param status: READY, FAIL
    """
    if ctx.dry_run:
        ctx.write_output(f'[DRY RUN] Would write status {status}: {message}')
        return

    try:
        os.makedirs(os.path.dirname(ctx.status_file) or '.', exist_ok=True)
        with open(ctx.status_file, 'w') as f:
            f.write(f'{status}: {message}\n')
    except OSError as e:
        ctx.write_output(f'Error writing status: {e}', logging.WARNING)


def runfail(ctx: RunContext, reason):
    """
    Log the failure, record it in the status file and exit

    :param reason: Failure reason (usually an IPConfigError)
    """
    if isinstance(reason, Exception):
        reason = f'{type(reason).__name__}: {reason}'

    ctx.write_output(f'FAILED: {reason}', logging.ERROR)
    write_status(ctx, reason, 'FAIL')
    sys.exit(1)
