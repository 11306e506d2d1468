import json
import os
from collections import namedtuple

import pytest
from eth_account import Account

from provisioner.config import NetworkConfig
from provisioner.errors import DeploymentFailed
from provisioner.provisioner import Handle

TEST_PRIVATE_KEY = '0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318'

# Creation code returning a single STOP byte as runtime code, constructor arguments are ignored
STUB_BYTECODE = '0x6001600c60003960016000f300'

LEND_MANAGER_ABI = [
    {'type': 'constructor', 'inputs': [], 'stateMutability': 'nonpayable'},
]

LOCK_ASSET_ABI = [
    {
        'type': 'constructor',
        'inputs': [{'name': '_lendManager', 'type': 'address', 'internalType': 'address'}],
        'stateMutability': 'nonpayable',
    },
]

MAIN_ABI = LEND_MANAGER_ABI


class FakeBackend(object):
    """Deployment backend which records calls and hands out sequential addresses"""

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.calls = []
        self.submitted = []
        self.events = []

    def address_for(self, i):
        return '0x{:040x}'.format(0x1000 + i)

    def submit_and_confirm(self, template, args):
        self.calls.append(('submit_and_confirm', template, list(args)))
        self.events.append(('submit', template))

        failure = self.failures.get(template)
        if failure is not None:
            raise failure

        self.submitted.append((template, list(args)))
        address = self.address_for(len(self.submitted))
        self.events.append(('confirm', template))
        return Handle(template, template, address, '0x{:064x}'.format(len(self.submitted)), len(self.submitted))

    def at(self, template, address):
        self.calls.append(('at', template, address))
        if template in self.failures:
            raise self.failures[template]

        return Handle(template, template, address, None, None)


class RejectingBackend(FakeBackend):
    def __init__(self, template):
        super().__init__({template: DeploymentFailed('insufficient funds for gas * price + value')})


def write_artifact(directory, name, abi, bytecode=STUB_BYTECODE, **extra):
    """Write a Hardhat style artifact the way `hardhat compile` lays them out"""
    contract_dir = os.path.join(directory, 'contracts', name + '.sol')
    os.makedirs(contract_dir, exist_ok=True)

    artifact = {
        '_format': 'hh-sol-artifact-1',
        'contractName': name,
        'sourceName': 'contracts/{}.sol'.format(name),
        'abi': abi,
        'bytecode': bytecode,
        'deployedBytecode': '0x00',
        'linkReferences': {},
        'deployedLinkReferences': {},
    }
    artifact.update(extra)

    with open(os.path.join(contract_dir, name + '.json'), 'w') as f:
        json.dump(artifact, f)
    with open(os.path.join(contract_dir, name + '.dbg.json'), 'w') as f:
        json.dump({'_format': 'hh-sol-dbg-1', 'buildInfo': '../../build-info/0.json'}, f)

    return artifact


@pytest.fixture
def network_config():
    return NetworkConfig.from_dict({
        'eth_uri': 'http://localhost:8545',
        'chain_id': 1337,
        'private_key': TEST_PRIVATE_KEY,
    }, 'local', {}, environ={})


@pytest.fixture
def keyless_network_config():
    return NetworkConfig.from_dict({
        'eth_uri': 'http://localhost:8545',
        'chain_id': 1337,
    }, 'local', {}, environ={})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def artifacts(tmp_path):
    artifactdir = str(tmp_path / 'artifacts')
    write_artifact(artifactdir, 'LendManager', LEND_MANAGER_ABI)
    write_artifact(artifactdir, 'LockAsset', LOCK_ASSET_ABI)
    write_artifact(artifactdir, 'Main', MAIN_ABI)

    os.makedirs(os.path.join(artifactdir, 'build-info'))
    with open(os.path.join(artifactdir, 'build-info', '0.json'), 'w') as f:
        json.dump({'_format': 'hh-sol-build-info-1', 'solcVersion': '0.8.28'}, f)

    return artifactdir


@pytest.fixture
def eth_tester():
    eth_tester = pytest.importorskip('eth_tester')
    return eth_tester.EthereumTester(eth_tester.PyEVMBackend())


@pytest.fixture
def web3(eth_tester):
    from web3 import Web3
    from web3.providers.eth_tester import EthereumTesterProvider

    return Web3(EthereumTesterProvider(eth_tester))


@pytest.fixture
def chain(artifacts, web3):
    """Funded deployer account on an in-process chain"""
    from provisioner.deployer import Deployer
    from provisioner.network import Network

    owner = Account.create()
    txhash = web3.eth.send_transaction({'from': web3.eth.accounts[0], 'to': owner.address, 'value': 10 * 10 ** 18})
    web3.eth.wait_for_transaction_receipt(txhash)

    network = Network.from_web3('tester', web3, owner.key, 1000000, 10 * 10 ** 9, 3, 10, {})
    deployer = Deployer(network, artifacts)
    config = NetworkConfig('tester', 'http://localhost:8545', network.chain_id, 1000000, 10 * 10 ** 9, 3, 10, {},
                           private_key=owner.key)

    ChainFixture = namedtuple('ChainFixture', ('web3', 'network', 'deployer', 'config', 'owner'))
    return ChainFixture(web3, network, deployer, config, owner)
