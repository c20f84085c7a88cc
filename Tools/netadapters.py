#!/usr/bin/env python3
# netadapters.py - set-ipconfig Network Interface Discovery and Configuration
# Version 1.0 - October 2026
# Finds the single active interface with psutil, reads its addressing mode,
# gateway and DNS servers, and applies static address records.
# Windows hosts use the NetTCPIP/DnsClient cmdlets, Linux hosts use nmcli.

import os
import sys
import json
import socket
import logging
import platform
import ipaddress
from dataclasses import dataclass
from typing import Optional, List, Tuple, Dict, Any

import psutil

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import ipfunctions as ipf
from ipfunctions import (
    AddressRecord,
    RunContext,
    NoActiveInterface,
    AmbiguousInterface,
    InterfaceQueryError,
    ApplyConfigError,
    RecordParseError,
)

#==============================================================================
# CONFIGURATION
#==============================================================================

POWERSHELL = 'powershell.exe'
NMCLI = 'nmcli'

LINK_LOCAL = ipaddress.IPv4Network('169.254.0.0/16')

PS_QUERY_INTERFACE = '''
$ErrorActionPreference = 'Stop'
$ipif = Get-NetIPInterface -InterfaceAlias {alias} -AddressFamily IPv4
$cfg = Get-NetIPConfiguration -InterfaceAlias {alias}
$dns = Get-DnsClientServerAddress -InterfaceAlias {alias} -AddressFamily IPv4
@{{
    Dhcp = [string]$ipif.Dhcp
    Gateway = ($cfg.IPv4DefaultGateway | Select-Object -First 1).NextHop
    DNS = @($dns.ServerAddresses)
}} | ConvertTo-Json -Compress
'''

PS_APPLY_RECORD = '''
$ErrorActionPreference = 'Stop'
$adapter = Get-NetAdapter -Name {alias}
Set-NetIPInterface -InterfaceIndex $adapter.ifIndex -AddressFamily IPv4 -Dhcp Disabled
Remove-NetIPAddress -InterfaceIndex $adapter.ifIndex -AddressFamily IPv4 -Confirm:$false -ErrorAction SilentlyContinue
Remove-NetRoute -InterfaceIndex $adapter.ifIndex -AddressFamily IPv4 -Confirm:$false -ErrorAction SilentlyContinue
New-NetIPAddress -InterfaceIndex $adapter.ifIndex -IPAddress '{address}' -PrefixLength {prefix}{gateway} | Out-Null
{dns}
Write-Output "Static IP configured"
'''

#==============================================================================
# LIVE INTERFACE
#==============================================================================

@dataclass
class InterfaceConfig:
    """The active interface and what it is configured with right now"""
    name: str
    dhcp: bool
    record: Optional[AddressRecord]

    @property
    def mode(self) -> str:
        return 'dhcp' if self.dhcp else 'static'

    def __str__(self):
        return f'{self.name} ({self.mode}) {self.record or "no IPv4 address"}'


def netmask_to_prefix(netmask: str) -> int:
    return ipaddress.IPv4Network(f'0.0.0.0/{netmask}').prefixlen


class NetworkAdapter:
    """
    Common interface enumeration through psutil. Subclasses supply the
    platform specific query() and apply().
    """

    name = 'base'

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.excluded = ipf.get_config_list(ctx.config, ipf.config_section, 'exclude_interfaces')

    def _is_loopback(self, ifname: str, addrs) -> bool:
        if ifname == 'lo' or 'loopback' in ifname.lower():
            return True
        for addr in addrs:
            if addr.family == socket.AF_INET and ipaddress.IPv4Address(addr.address).is_loopback:
                return True
        return False

    def active_interfaces(self) -> List[str]:
        """
        Names of the interfaces whose link is up, loopback and
        excluded interfaces left out
        """
        stats = psutil.net_if_stats()
        addrs = psutil.net_if_addrs()

        active = []
        for ifname, st in sorted(stats.items()):
            if not st.isup:
                continue
            if ifname in self.excluded:
                self.ctx.write_output(f'Skipping excluded interface {ifname}', logging.DEBUG)
                continue
            if self._is_loopback(ifname, addrs.get(ifname, [])):
                continue
            active.append(ifname)
        return active

    def ipv4_address(self, ifname: str) -> Optional[Tuple[str, int]]:
        """
        First usable IPv4 address and prefix length of an interface

        :return: (address, prefix_length) or None when there is none
        """
        for addr in psutil.net_if_addrs().get(ifname, []):
            if addr.family != socket.AF_INET or not addr.address:
                continue
            if ipaddress.IPv4Address(addr.address) in LINK_LOCAL:
                continue
            if not addr.netmask:
                raise InterfaceQueryError(f'No netmask reported for {addr.address} on {ifname}')
            return addr.address, netmask_to_prefix(addr.netmask)
        return None

    def query(self, ifname: str) -> Dict[str, Any]:
        """Return {'dhcp': bool, 'gateway': str|None, 'dns': [str]}"""
        raise NotImplementedError

    def apply(self, ifname: str, record: AddressRecord):
        raise NotImplementedError

    def read_interface(self, ifname: str) -> InterfaceConfig:
        details = self.query(ifname)
        address = self.ipv4_address(ifname)

        record = None
        if address:
            try:
                record = AddressRecord.from_dns_list(
                    address[0], address[1],
                    gateway=details.get('gateway'),
                    dns=details.get('dns'),
                )
            except RecordParseError as e:
                raise InterfaceQueryError(f'Unexpected live configuration on {ifname}: {e}')

        return InterfaceConfig(name=ifname, dhcp=details['dhcp'], record=record)


def _first(value):
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _as_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    return [v for v in value if v]


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class WindowsAdapter(NetworkAdapter):
    """NetTCPIP and DnsClient cmdlets through powershell.exe"""

    name = 'windows'

    def powershell(self, script: str):
        return ipf.run_command(
            [POWERSHELL, '-NoProfile', '-NonInteractive', '-Command', script],
            shell=False,
            logger=self.ctx.logger,
        )

    def query(self, ifname: str) -> Dict[str, Any]:
        result = self.powershell(PS_QUERY_INTERFACE.format(alias=_ps_quote(ifname)))
        if result.returncode != 0:
            raise InterfaceQueryError(f'Cannot query {ifname}: {result.stderr.strip()}')

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            raise InterfaceQueryError(f'Unexpected output querying {ifname}: {result.stdout.strip()!r}')

        gateway = _first(data.get('Gateway'))
        if gateway in ('', '0.0.0.0'):
            gateway = None

        return {
            'dhcp': str(data.get('Dhcp', '')).lower() == 'enabled',
            'gateway': gateway,
            'dns': _as_list(data.get('DNS')),
        }

    def apply(self, ifname: str, record: AddressRecord):
        gateway = f' -DefaultGateway {_ps_quote(record.gateway)}' if record.gateway else ''
        if record.dns_servers:
            servers = ','.join(_ps_quote(d) for d in record.dns_servers)
            dns = f'Set-DnsClientServerAddress -InterfaceIndex $adapter.ifIndex -ServerAddresses @({servers})'
        else:
            dns = 'Set-DnsClientServerAddress -InterfaceIndex $adapter.ifIndex -ResetServerAddresses'

        script = PS_APPLY_RECORD.format(
            alias=_ps_quote(ifname),
            address=record.address,
            prefix=record.prefix_length,
            gateway=gateway,
            dns=dns,
        )
        result = self.powershell(script)
        if result.returncode != 0:
            raise ApplyConfigError(f'Failed to apply {record} to {ifname}: {result.stderr.strip()}')


class NmcliAdapter(NetworkAdapter):
    """NetworkManager connection profiles through nmcli"""

    name = 'nmcli'

    def nmcli(self, *args):
        return ipf.run_command([NMCLI, *args], shell=False, logger=self.ctx.logger)

    def _get(self, what: str, target: str, field: str) -> str:
        result = self.nmcli('-g', field, what, 'show', target)
        if result.returncode != 0:
            raise InterfaceQueryError(f'nmcli {what} show {target} failed: {result.stderr.strip()}')
        return result.stdout.strip()

    def connection(self, ifname: str) -> str:
        conn = self._get('device', ifname, 'GENERAL.CONNECTION')
        if not conn:
            raise InterfaceQueryError(f'No NetworkManager connection active on {ifname}')
        return conn

    def query(self, ifname: str) -> Dict[str, Any]:
        conn = self.connection(ifname)
        method = self._get('connection', conn, 'ipv4.method')
        gateway = self._get('device', ifname, 'IP4.GATEWAY') or None
        dns_raw = self._get('device', ifname, 'IP4.DNS')
        # Multiple values come back separated by ' | '
        dns = [d.strip() for d in dns_raw.replace('\n', '|').split('|') if d.strip()]

        return {
            'dhcp': method == 'auto',
            'gateway': gateway,
            'dns': dns,
        }

    def apply(self, ifname: str, record: AddressRecord):
        conn = self.connection(ifname)
        result = self.nmcli(
            'connection', 'modify', conn,
            'ipv4.method', 'manual',
            'ipv4.addresses', f'{record.address}/{record.prefix_length}',
            'ipv4.gateway', record.gateway or '',
            'ipv4.dns', ' '.join(record.dns_servers),
        )
        if result.returncode != 0:
            raise ApplyConfigError(f'Failed to modify {conn} with {record}: {result.stderr.strip()}')

        result = self.nmcli('connection', 'up', conn)
        if result.returncode != 0:
            raise ApplyConfigError(f'Failed to activate {conn} on {ifname}: {result.stderr.strip()}')


ADAPTERS = {
    'windows': WindowsAdapter,
    'nmcli': NmcliAdapter,
}

#==============================================================================
# FUNCTIONS
#==============================================================================

def get_adapter(ctx: RunContext) -> NetworkAdapter:
    """
    Pick the adapter named in config, or by platform when set to auto

    :return: NetworkAdapter instance
    """
    choice = ipf.get_config_value(ctx.config, ipf.config_section, 'adapter', 'auto').lower()
    if choice == 'auto':
        choice = 'windows' if platform.system() == 'Windows' else 'nmcli'
    if choice not in ADAPTERS:
        raise ipf.IPConfigError(f'Unknown adapter {choice!r}, expected one of: auto, {", ".join(ADAPTERS)}')
    return ADAPTERS[choice](ctx)


def discover_interface(ctx: RunContext, adapter: NetworkAdapter) -> InterfaceConfig:
    """
    Find the one interface with link up and read its live configuration

    :raises NoActiveInterface: no interface is up
    :raises AmbiguousInterface: more than one interface is up
    """
    names = adapter.active_interfaces()

    if not names:
        raise NoActiveInterface('No network interface has link up')
    if len(names) > 1:
        raise AmbiguousInterface(f'{len(names)} interfaces have link up: {", ".join(names)}')

    live = adapter.read_interface(names[0])
    ctx.write_output(f'Active interface: {live}')
    return live


#==============================================================================
# STANDALONE EXECUTION
#==============================================================================

def main():
    """Print the active interface configuration"""
    import argparse

    parser = argparse.ArgumentParser(description='set-ipconfig interface discovery')
    parser.add_argument('--adapter', '-a', choices=['auto', *ADAPTERS], default='auto',
                        help='Platform adapter to use (default: auto)')
    args = parser.parse_args()

    ctx = RunContext(record_dir=ipf.default_record_dir)
    ctx.config.add_section(ipf.config_section)
    ctx.config.set(ipf.config_section, 'adapter', args.adapter)
    logging.basicConfig(level=logging.INFO, format='%(message)s')

    try:
        live = discover_interface(ctx, get_adapter(ctx))
    except ipf.IPConfigError as e:
        print(f'{type(e).__name__}: {e}')
        sys.exit(1)

    print(live)


if __name__ == '__main__':
    main()
