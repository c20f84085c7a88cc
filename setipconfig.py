#!/usr/bin/env python3
# setipconfig.py - set-ipconfig DR IP Reconfiguration
# Version 1.0 - October 2026
# Run once per boot: decides between the production and DR static
# configuration of the single active interface, applies it, and
# snapshots what is live for the next boot

import os
import time
import logging
import argparse
from enum import Enum
from dataclasses import dataclass
from typing import Optional

import ipfunctions as ipf
from ipfunctions import (
    AddressRecord,
    RunContext,
    IPConfigError,
    InterfaceQueryError,
    NoHistoryForDrDecision,
    UnknownPreviousState,
    NoSavedConfigForDhcp,
)
from Tools.netadapters import InterfaceConfig, NetworkAdapter, discover_interface, get_adapter
from Tools.dns_checks import run_dns_checks

#==============================================================================
# DECISION TYPES
#==============================================================================

class State(Enum):
    STATIC_NO_HISTORY = 'Static-NoHistory'
    STATIC_UNCHANGED = 'Static-WithHistory-Unchanged'
    STATIC_CHANGED = 'Static-WithHistory-Changed'
    DHCP_NO_HISTORY = 'Dhcp-NoHistory'
    DHCP_DR_NO_HISTORY = 'Dhcp-WithDrNoHistory'
    DHCP_DR_PREV_PROD = 'Dhcp-WithDr-PrevWasProd'
    DHCP_DR_PREV_DR = 'Dhcp-WithDr-PrevWasDr'
    DHCP_DR_PREV_UNKNOWN = 'Dhcp-WithDr-PrevUnknown'
    DHCP_NO_DR_SAVED = 'Dhcp-NoDr-WithSaved'
    DHCP_NO_DR_NO_SAVED = 'Dhcp-NoDr-NoSaved'


class Action(Enum):
    SAVE_CURRENT = 'save-current'      # persist the live config as current
    NONE = 'none'                      # leave interface and current alone
    APPLY_DR = 'apply-dr'              # put the DR override on the interface
    APPLY_CURRENT = 'apply-current'    # put the production config on the interface


@dataclass(frozen=True)
class Decision:
    state: State
    action: Action
    record: Optional[AddressRecord]
    reason: str

    @property
    def applies(self) -> bool:
        return self.action in (Action.APPLY_DR, Action.APPLY_CURRENT)

#==============================================================================
# DECISION PROCEDURE
#==============================================================================

def decide(live: InterfaceConfig,
           current: Optional[AddressRecord],
           previous: Optional[AddressRecord],
           dr: Optional[AddressRecord]) -> Decision:
    """
    Classify the host and choose at most one action.

    Static interfaces are the durable production record: current is only
    replaced when the address really changed and no DR override is
    provisioned. DHCP on the interface means no static config is installed
    yet, and previous tells which way the last boot went.

    :param live: active interface as read from the OS
    :param current: saved production config (ipconfig)
    :param previous: config that was live at the end of the last run
    :param dr: DR override (dr_ipconfig)
    :return: Decision
    :raises NoHistoryForDrDecision, UnknownPreviousState, NoSavedConfigForDhcp:
    """
    if not live.dhcp:
        if live.record is None:
            raise InterfaceQueryError(f'Static interface {live.name} has no IPv4 address')

        if current is None:
            return Decision(State.STATIC_NO_HISTORY, Action.SAVE_CURRENT, live.record,
                            'no saved configuration, saving the live static configuration')

        if not live.record.same_address(current) and dr is None:
            return Decision(State.STATIC_CHANGED, Action.SAVE_CURRENT, live.record,
                            f'static address changed from {current.address} to {live.record.address}')

        if dr is not None and not live.record.same_address(current):
            reason = f'static address {live.record.address} differs from saved, DR override present'
        else:
            reason = f'static address {live.record.address} matches saved configuration'
        return Decision(State.STATIC_UNCHANGED, Action.NONE, None, reason)

    if dr is not None:
        if previous is None:
            raise NoHistoryForDrDecision(
                'DR override present but no previous configuration recorded, cannot tell production from DR')

        if previous.same_address(current):
            return Decision(State.DHCP_DR_PREV_PROD, Action.APPLY_DR, dr,
                            f'previous run was production ({previous.address}), failing over to DR')

        if previous.same_address(dr):
            if current is None:
                raise NoSavedConfigForDhcp(
                    f'previous run was DR ({previous.address}) but no production configuration is saved')
            return Decision(State.DHCP_DR_PREV_DR, Action.APPLY_CURRENT, current,
                            f'previous run was DR ({previous.address}), failing back to production')

        raise UnknownPreviousState(
            f'previous address {previous.address} matches neither production '
            f'({current.address if current else "none"}) nor DR ({dr.address})')

    if current is None:
        raise NoSavedConfigForDhcp('Interface is on DHCP and no saved configuration exists')

    state = State.DHCP_NO_HISTORY if previous is None else State.DHCP_NO_DR_SAVED
    return Decision(state, Action.APPLY_CURRENT, current,
                    'Interface is on DHCP, restoring saved configuration')

#==============================================================================
# RUN
#==============================================================================

def load_records(ctx: RunContext):
    store = ctx.store
    current = store.load(ipf.CURRENT)
    previous = store.load(ipf.PREVIOUS)
    dr = store.load(ipf.DR_OVERRIDE)

    for name, record in ((ipf.CURRENT, current), (ipf.PREVIOUS, previous), (ipf.DR_OVERRIDE, dr)):
        ctx.write_output(f'{name}: {record if record else "not present"}', logging.DEBUG)

    return current, previous, dr


def run(ctx: RunContext, adapter: NetworkAdapter) -> Decision:
    """
    One full decision-and-snapshot sequence

    :return: the Decision that was carried out
    :raises IPConfigError: on any fatal condition, before anything further is changed
    """
    live = discover_interface(ctx, adapter)
    current, previous, dr = load_records(ctx)

    decision = decide(live, current, previous, dr)
    ctx.write_output(f'State {decision.state.value}: {decision.reason}')

    if ctx.dry_run:
        if decision.action != Action.NONE:
            ctx.write_output(f'[DRY RUN] Would {decision.action.value}: {decision.record}')
        ctx.write_output(f'[DRY RUN] Would save live configuration as {ipf.PREVIOUS}')
        return decision

    store = ctx.store

    if decision.action == Action.SAVE_CURRENT:
        store.save(ipf.CURRENT, decision.record)
        ctx.write_output(f'Saved {decision.record} as {ipf.CURRENT}')
    elif decision.applies:
        ctx.write_output(f'Applying {decision.record} to {live.name}')
        adapter.apply(live.name, decision.record)
        settle_seconds = ctx.settle_seconds
        if settle_seconds > 0:
            ctx.write_output(f'Waiting {settle_seconds} seconds for {live.name} to settle', logging.DEBUG)
            time.sleep(settle_seconds)

    final = adapter.read_interface(live.name)
    if final.record is None:
        raise InterfaceQueryError(f'{live.name} has no IPv4 address after reconfiguration')

    store.save(ipf.PREVIOUS, final.record)
    ctx.write_output(f'Saved {final.record} as {ipf.PREVIOUS}')

    if decision.applies:
        run_dns_checks(ctx, final.record)

    ipf.write_status(ctx, f'{decision.state.value} - {final.record}', 'READY')
    return decision


def show(ctx: RunContext, adapter: NetworkAdapter):
    """Log the live interface and the stored records without changing anything"""
    try:
        discover_interface(ctx, adapter)
    except IPConfigError as e:
        ctx.write_output(f'Interface: {type(e).__name__}: {e}', logging.WARNING)

    for name in ipf.RECORD_NAMES:
        try:
            record = ctx.store.load(name)
        except IPConfigError as e:
            ctx.write_output(f'{name}: unreadable - {e}', logging.WARNING)
            continue
        ctx.write_output(f'{name}: {record if record else "not present"}')

#==============================================================================
# MAIN
#==============================================================================

def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description='Apply production or DR IPv4 configuration at boot')
    parser.add_argument('mode', nargs='?', default='apply',
                        choices=['apply', 'show'],
                        help='Execution mode (apply or show)')
    parser.add_argument('path', nargs='?', default=ipf.default_record_dir,
                        help=f'Directory holding the ipconfig records (default: {ipf.default_record_dir})')
    parser.add_argument('--config', '-c', default=None,
                        help=f'Config file (default: {ipf.configname} in the record directory)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Dry run - no actual changes')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    record_dir = os.path.abspath(args.path)

    config = ipf.load_config(record_dir, args.config)
    logger = ipf.setup_logging(record_dir, config, verbose=args.verbose)
    ctx = RunContext(record_dir=record_dir, config=config, logger=logger, dry_run=args.dry_run)

    ctx.write_output(f'set-ipconfig starting: mode={args.mode}, records={record_dir}')

    try:
        adapter = get_adapter(ctx)
        if args.mode == 'show':
            show(ctx, adapter)
            return
        decision = run(ctx, adapter)
    except IPConfigError as e:
        ipf.runfail(ctx, e)

    ctx.write_output(f'set-ipconfig finished: {decision.state.value}')


if __name__ == '__main__':
    main()
