import click
import logging
import sys

from dotenv import load_dotenv

from provisioner import steps
from provisioner.config import Config
from provisioner.deployer import Deployer
from provisioner.errors import ProvisioningError
from provisioner.provisioner import Provisioner

import requests


def load_config(config):
    """Load configuration from a YAML file if given, otherwise use the built in networks.

    :param config: File object containing YAML configuration, or None
    :return: Loaded configuration
    """
    if config is None:
        return Config.from_dict({})

    return Config.from_yaml(config)


def fail(message):
    click.echo(message, err=True)
    sys.exit(1)


def report(network, handles):
    """Print where each contract lives.

    :param network: Network the contracts were deployed to
    :param handles: Handles of confirmed contracts
    :return: None
    """
    for handle in handles:
        click.echo('{0} deployed at {1}'.format(handle.name, handle.address))

        link = network.explorer_link(handle.address)
        if link is not None:
            click.echo('  {}'.format(link))


@click.group()
@click.option('--env-file', type=click.Path(dir_okay=False), default='.env',
              help='Dotenv file to load environment variables such as WALLET_KEY from')
@click.option('-v', '--verbose', count=True,
              help='Verbosity level')
@click.pass_context
def cli(ctx, env_file, verbose):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)
    load_dotenv(env_file)
    ctx.ensure_object(dict)


@cli.command()
@click.option('--config', envvar='CONFIG', type=click.File('r'),
              help='Path to yaml config file defining networks and contracts')
@click.pass_context
def networks(ctx, config):
    try:
        config = load_config(config)
    except ValueError as e:
        fail('Invalid configuration: {}'.format(e))

    for name, network_config in sorted(config.network_configs.items()):
        click.echo('{0}: {1} (chain id {2})'.format(name, network_config.eth_uri, network_config.chain_id))


@cli.command()
@click.option('--config', envvar='CONFIG', type=click.File('r'),
              help='Path to yaml config file defining networks and contracts')
@click.option('--network', default='base-sepolia',
              help='What network to plan a deployment for')
@click.option('--only', multiple=True,
              help='Only deploy these contracts (and their dependencies), may be repeated')
@click.pass_context
def plan(ctx, config, network, only):
    try:
        network_config = load_config(config).network(network)
        deployment_steps = steps.load(network_config, to_deploy=list(only) or None)
    except (ProvisioningError, ValueError) as e:
        fail('Error: {}'.format(e))

    for i, step in enumerate(deployment_steps):
        line = '{0}. {1}'.format(i + 1, step.name)
        if step.dependencies:
            line += ' (after {})'.format(', '.join(sorted(step.dependencies)))
        if step.address is not None:
            line += ' [existing at {}]'.format(step.address)
        click.echo(line)


@cli.command()
@click.option('--config', envvar='CONFIG', type=click.File('r'),
              help='Path to yaml config file defining networks and contracts')
@click.option('--network', required=True,
              help='What network to deploy to')
@click.option('--keyfile', envvar='KEYFILE', type=click.File('r'),
              help='Path to private key json file used to deploy, instead of WALLET_KEY')
@click.option('--password', envvar='PASSWORD',
              help='Password used to decrypt private key')
@click.option('-a', '--artifactdir', type=click.Path(exists=True, file_okay=False), default='artifacts',
              help='Directory containing the compiled artifacts to deploy')
@click.option('-o', '--output', type=click.Path(dir_okay=False, writable=True), required=False,
              help='File to output deployment results json to')
@click.option('--resume', type=click.File('r'),
              help='Results json from a previous deployment, contracts listed there are reused')
@click.option('--only', multiple=True,
              help='Only deploy these contracts (and their dependencies), may be repeated')
@click.pass_context
def deploy(ctx, config, network, keyfile, password, artifactdir, output, resume, only):
    try:
        network_config = load_config(config).network(network)
    except (ProvisioningError, ValueError) as e:
        fail('Error: {}'.format(e))

    if keyfile is not None:
        if password is None:
            password = click.prompt('Password', hide_input=True)
        if not network_config.unlock_keyfile(keyfile, password):
            fail('Could not unlock keyfile, exiting')

    try:
        network = network_config.create()
        deployer = Deployer(network, artifactdir)
        provisioner = Provisioner(deployer, network_config)

        addresses = deployer.read_results(resume) if resume is not None else None
        deployment_steps = steps.load(network_config, to_deploy=list(only) or None, addresses=addresses)
    except (ProvisioningError, ValueError) as e:
        fail('Error: {}'.format(e))

    try:
        network.connect()
    except requests.exceptions.RequestException:
        fail('Could not connect to Ethereum client, exiting')
    except ValueError as e:
        fail('Error: {}'.format(e))

    # Default to <network>.json
    if not output:
        output = network_config.name + '.json'

    try:
        handles = provisioner.run(deployment_steps)
    except ProvisioningError as e:
        report(network, e.confirmed)
        with open(output, 'w') as f:
            deployer.dump_results(f, e.confirmed)
        fail('Error: {}'.format(e))

    report(network, handles)
    with open(output, 'w') as f:
        deployer.dump_results(f, handles)


if __name__ == '__main__':
    cli(obj={})
