import json

import pytest
from click.testing import CliRunner

from conftest import TEST_PRIVATE_KEY
from provisioner.__main__ import cli
from provisioner.deployer import Deployer
from provisioner.errors import DeploymentFailed
from provisioner.network import Network
from provisioner.provisioner import Handle, Provisioner


def plan_lines(output):
    return [line for line in output.splitlines() if line[:1].isdigit()]


@pytest.fixture
def runner(monkeypatch):
    # Recorded with setenv first so values loaded from .env files are removed afterwards
    for name in ('WALLET_KEY', 'CONFIG'):
        monkeypatch.setenv(name, '')
        monkeypatch.delenv(name)
    return CliRunner()


@pytest.fixture
def env_file(tmp_path):
    return str(tmp_path / 'missing.env')


def test_networks_lists_defaults(runner, env_file):
    result = runner.invoke(cli, ['--env-file', env_file, 'networks'])

    assert result.exit_code == 0
    assert 'base-mainnet: https://mainnet.base.org (chain id 8453)' in result.output
    assert 'base-sepolia: https://sepolia.base.org (chain id 84532)' in result.output


def test_plan_shows_deployment_order(runner, env_file):
    result = runner.invoke(cli, ['--env-file', env_file, 'plan', '--network', 'base-sepolia'])

    assert result.exit_code == 0
    assert plan_lines(result.output) == ['1. LendManager', '2. LockAsset (after LendManager)']


def test_plan_with_config_file(runner, env_file, tmp_path):
    config = tmp_path / 'config.yaml'
    config.write_text('contracts:\n  Main:\n    enabled: true\n')

    result = runner.invoke(cli, ['--env-file', env_file, 'plan', '--network', 'base-mainnet',
                                 '--config', str(config)])

    assert result.exit_code == 0
    assert plan_lines(result.output) == ['1. LendManager', '2. Main', '3. LockAsset (after LendManager)']


def test_deploy_without_key_fails_before_connecting(runner, env_file, artifacts, monkeypatch):
    def connect(self, skip_checks=False):
        raise AssertionError('should not connect')

    monkeypatch.setattr(Network, 'connect', connect)

    result = runner.invoke(cli, ['--env-file', env_file, 'deploy', '--network', 'base-sepolia', '-a', artifacts])

    assert result.exit_code == 1
    assert 'missing required configuration: private_key' in result.output


def test_deploy_unknown_network(runner, env_file, artifacts):
    result = runner.invoke(cli, ['--env-file', env_file, 'deploy', '--network', 'base-goerli', '-a', artifacts])

    assert result.exit_code == 1
    assert 'No such network base-goerli' in result.output


def test_deploy_reads_key_from_env_file_and_reports(runner, artifacts, tmp_path, monkeypatch):
    env_file = tmp_path / '.env'
    env_file.write_text('WALLET_KEY={}\n'.format(TEST_PRIVATE_KEY))
    output = str(tmp_path / 'results.json')

    handles = [
        Handle('LendManager', 'LendManager', '0x' + '11' * 20, '0x' + '01' * 32, 1),
        Handle('LockAsset', 'LockAsset', '0x' + '22' * 20, '0x' + '02' * 32, 2),
    ]
    monkeypatch.setattr(Network, 'connect', lambda self, skip_checks=False: None)
    monkeypatch.setattr(Provisioner, 'run', lambda self, deployment_steps: handles)

    result = runner.invoke(cli, ['--env-file', str(env_file), 'deploy', '--network', 'base-sepolia',
                                 '-a', artifacts, '-o', output])

    assert result.exit_code == 0, result.output
    assert 'LendManager deployed at 0x' + '11' * 20 in result.output
    assert 'LockAsset deployed at 0x' + '22' * 20 in result.output
    assert 'https://base-sepolia.blockscout.com/address/0x' + '22' * 20 in result.output


def test_deploy_failure_reports_confirmed_steps_and_writes_results(runner, artifacts, tmp_path, monkeypatch):
    env_file = tmp_path / '.env'
    env_file.write_text('WALLET_KEY={}\n'.format(TEST_PRIVATE_KEY))
    output = tmp_path / 'results.json'
    lend_manager = '0x' + '11' * 20

    def submit_and_confirm(self, name, args):
        if name == 'LockAsset':
            assert args == [lend_manager]
            raise DeploymentFailed('insufficient funds for gas * price + value')
        return Handle(name, name, lend_manager, '0x' + '01' * 32, 1)

    monkeypatch.setattr(Network, 'connect', lambda self, skip_checks=False: None)
    monkeypatch.setattr(Deployer, 'submit_and_confirm', submit_and_confirm)

    result = runner.invoke(cli, ['--env-file', str(env_file), 'deploy', '--network', 'base-sepolia',
                                 '-a', artifacts, '-o', str(output)])

    assert result.exit_code == 1
    assert 'LendManager deployed at ' + lend_manager in result.output
    assert 'Step 1 (LockAsset) failed: insufficient funds' in result.output

    with open(str(output)) as f:
        results = json.load(f)
    assert results['lend_manager_address'] == lend_manager
    assert 'lock_asset_address' not in results
    assert results['chain_id'] == 84532
