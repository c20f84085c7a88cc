#!/usr/bin/env python3
# conftest.py - set-ipconfig Pytest Configuration and Fixtures
# Version 1.0 - October 2026
# Shared fixtures for all test modules

import pytest
import os
import sys
import logging
import tempfile
from unittest.mock import MagicMock, patch
from configparser import ConfigParser

# Add parent directory to path for imports
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, parent_dir)

import ipfunctions as ipf
from ipfunctions import AddressRecord, RunContext
from Tools.netadapters import NetworkAdapter

#==============================================================================
# FIXTURES - Records
#==============================================================================

PROD = AddressRecord('10.0.0.5', 24, '10.0.0.1', '10.0.0.10', '10.0.0.11')
DR = AddressRecord('172.16.0.5', 24, '172.16.0.1', '172.16.0.10')
STRAY = AddressRecord('9.9.9.9', 24, '9.9.9.1')


@pytest.fixture
def prod_record():
    return PROD


@pytest.fixture
def dr_record():
    return DR


@pytest.fixture
def stray_record():
    return STRAY

#==============================================================================
# FIXTURES - File System and Context
#==============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def record_dir(temp_dir):
    """Record directory inside the temp dir"""
    path = os.path.join(temp_dir, 'records')
    os.makedirs(path, exist_ok=True)
    return path


@pytest.fixture
def test_config():
    """Config with no settle delay and no DNS check"""
    config = ConfigParser()
    config.add_section(ipf.config_section)
    config.set(ipf.config_section, 'settle_seconds', '0')
    return config


@pytest.fixture
def ctx(record_dir, test_config):
    """RunContext writing into the temp record directory"""
    logger = logging.getLogger('setipconfig.test')
    return RunContext(record_dir=record_dir, config=test_config, logger=logger)


@pytest.fixture
def store(ctx):
    return ctx.store

#==============================================================================
# FIXTURES - Fake Network Adapter
#==============================================================================

class FakeAdapter(NetworkAdapter):
    """
    In-memory interfaces: {name: {'up': bool, 'dhcp': bool, 'record': AddressRecord|None}}
    apply() switches the interface to static with the given record.
    """

    name = 'fake'

    def __init__(self, ctx, interfaces):
        super().__init__(ctx)
        self.interfaces = interfaces
        self.applied = []
        self.fail_apply = False

    def active_interfaces(self):
        return [name for name, i in sorted(self.interfaces.items()) if i['up']]

    def ipv4_address(self, ifname):
        record = self.interfaces[ifname]['record']
        if record is None:
            return None
        return record.address, record.prefix_length

    def query(self, ifname):
        i = self.interfaces[ifname]
        record = i['record']
        return {
            'dhcp': i['dhcp'],
            'gateway': record.gateway if record else None,
            'dns': record.dns_servers if record else [],
        }

    def apply(self, ifname, record):
        if self.fail_apply:
            raise ipf.ApplyConfigError(f'refused {record}')
        self.applied.append((ifname, record))
        self.interfaces[ifname]['dhcp'] = False
        self.interfaces[ifname]['record'] = record


@pytest.fixture
def make_adapter(ctx):
    """Factory for a FakeAdapter with one interface 'eth0'"""
    def _make(dhcp=False, record=None, extra_up=0, up=True):
        interfaces = {'eth0': {'up': up, 'dhcp': dhcp, 'record': record}}
        for n in range(extra_up):
            interfaces[f'eth{n + 1}'] = {'up': True, 'dhcp': True, 'record': None}
        return FakeAdapter(ctx, interfaces)
    return _make

#==============================================================================
# FIXTURES - Mock Operations
#==============================================================================

@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for command execution tests"""
    with patch('subprocess.run') as mock_run:
        mock_run.return_value = MagicMock(
            returncode=0,
            stdout='Success',
            stderr=''
        )
        yield mock_run


@pytest.fixture
def no_sleep():
    """Skip time.sleep in retry loops"""
    with patch('time.sleep') as mock_sleep:
        yield mock_sleep

#==============================================================================
# MARKERS
#==============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "windows: marks tests of the PowerShell adapter"
    )
    config.addinivalue_line(
        "markers", "nmcli: marks tests of the NetworkManager adapter"
    )
