#!/usr/bin/env python3
# dns_checks.py - set-ipconfig DNS Health Check Module
# Version 1.0 - October 2026
# Verifies that the DNS servers of the applied address record answer
# for a known hostname once the interface has been reconfigured

import os
import sys
import time
import logging
import subprocess
from typing import List, Optional

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import ipfunctions as ipf
from ipfunctions import AddressRecord, RunContext

#==============================================================================
# CONFIGURATION
#==============================================================================

DNS_SECTION = 'DNS'
TIMEOUT_MINUTES = 2
CHECK_INTERVAL_SECONDS = 15

logger = logging.getLogger('setipconfig')

#==============================================================================
# FUNCTIONS
#==============================================================================

def resolve_dns(hostname: str, dns_server: str) -> list:
    """
    Resolve hostname using specific DNS server

    :param hostname: Hostname to resolve
    :param dns_server: DNS server to use
    :return: List of resolved IP addresses, empty list on failure
    """
    try:
        result = subprocess.run(
            ['dig', '+short', f'@{dns_server}', hostname, 'A'],
            capture_output=True,
            text=True,
            timeout=10
        )

        if result.returncode == 0 and result.stdout.strip():
            # Filter out CNAME responses, keep only IP addresses
            lines = result.stdout.strip().split('\n')
            return [line.strip() for line in lines if line.strip() and not line.strip().endswith('.')]

        return []

    except subprocess.TimeoutExpired:
        logger.warning(f'DNS resolution timeout for {hostname} via {dns_server}')
        return []
    except FileNotFoundError:
        # dig not available (Windows), try nslookup
        return resolve_dns_nslookup(hostname, dns_server)


def resolve_dns_nslookup(hostname: str, dns_server: str) -> list:
    """
    Fallback DNS resolution using nslookup

    :param hostname: Hostname to resolve
    :param dns_server: DNS server to use
    :return: List of resolved IP addresses
    """
    try:
        result = subprocess.run(
            ['nslookup', hostname, dns_server],
            capture_output=True,
            text=True,
            timeout=10
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.warning(f'nslookup resolution error for {hostname}: {e}')
        return []

    if result.returncode != 0:
        return []

    # The first Address line belongs to the server itself
    ips = []
    seen_name = False
    for line in result.stdout.split('\n'):
        line = line.strip()
        if line.startswith('Name:'):
            seen_name = True
            continue
        if not seen_name:
            continue
        if line.startswith('Address:') or line.startswith('Addresses:'):
            ip = line.split(':', 1)[-1].strip()
        elif line and ':' not in line:
            # Continuation lines of a multi-address answer
            ip = line
        else:
            continue
        if ip and ip != dns_server:
            ips.append(ip)
    return ips


def check_dns_server(hostname: str, dns_server: str) -> bool:
    results = resolve_dns(hostname, dns_server)

    if not results:
        logger.info(f'DNS {dns_server}: FAILED - No results for {hostname}')
        return False

    logger.info(f'DNS {dns_server}: PASSED - {hostname} -> {results}')
    return True


def run_dns_checks(ctx: RunContext, record: Optional[AddressRecord]) -> bool:
    """
    Check every DNS server of the record until all answer or the timeout passes.
    Skipped (True) when no check_hostname is configured or the record has no DNS servers.

    :param ctx: run context (config and logger)
    :param record: address record now active on the interface
    :return: True if all DNS servers answered within the timeout
    """
    hostname = ipf.get_config_value(ctx.config, DNS_SECTION, 'check_hostname')
    if not hostname:
        ctx.write_output('DNS check skipped: no check_hostname configured', logging.DEBUG)
        return True

    servers: List[str] = record.dns_servers if record else []
    if not servers:
        ctx.write_output('DNS check skipped: no DNS servers configured on the interface')
        return True

    timeout_value = ipf.get_config_value(ctx.config, DNS_SECTION, 'timeout_minutes', str(TIMEOUT_MINUTES))
    try:
        timeout_minutes = float(timeout_value)
    except ValueError:
        ctx.write_output(f'WARNING: timeout_minutes is not a number: {timeout_value}', logging.WARNING)
        timeout_minutes = TIMEOUT_MINUTES

    start_time = time.time()
    timeout_seconds = timeout_minutes * 60

    ctx.write_output(f'Starting DNS checks for {hostname} against {", ".join(servers)}')

    while True:
        failed = [s for s in servers if not check_dns_server(hostname, s)]

        if not failed:
            elapsed = int(time.time() - start_time)
            ctx.write_output(f'All DNS checks passed in {elapsed} seconds')
            return True

        if time.time() - start_time + CHECK_INTERVAL_SECONDS > timeout_seconds:
            break

        ctx.write_output(f'Failed DNS servers: {failed}. Retrying in {CHECK_INTERVAL_SECONDS} seconds...')
        time.sleep(CHECK_INTERVAL_SECONDS)

    ctx.write_output(f'WARNING: DNS servers {failed} did not answer within {timeout_minutes} minutes',
                     logging.WARNING)
    return False


#==============================================================================
# STANDALONE EXECUTION
#==============================================================================

def main():
    """Main entry point for standalone execution"""
    import argparse

    parser = argparse.ArgumentParser(description='set-ipconfig DNS Health Check')
    parser.add_argument('hostname', help='Hostname to resolve')
    parser.add_argument('--dns-server', '-s', action='append', required=True,
                        help='DNS server to query (repeatable)')

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format='%(message)s')

    success = all(check_dns_server(args.hostname, s) for s in args.dns_server)

    print(f'\nDNS checks result: {"PASSED" if success else "FAILED"}')
    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
