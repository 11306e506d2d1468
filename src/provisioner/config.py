import copy
import logging
import os

import yaml
from eth_account import Account

from provisioner.errors import ConfigurationMissing
from provisioner.network import Network

logger = logging.getLogger(__name__)

DEFAULT_PRIVATE_KEY_ENV = 'WALLET_KEY'
DEFAULT_GAS_LIMIT = 8000000
DEFAULT_GAS_PRICE = 1000000000

DEFAULT_CONFIG = {
    'contracts': {
        'Main': {
            'enabled': False,
        },
    },
    'networks': {
        'base-mainnet': {
            'eth_uri': 'https://mainnet.base.org',
            'chain_id': 8453,
            'gas_price': DEFAULT_GAS_PRICE,
            'explorer_url': 'https://basescan.org',
        },
        'base-sepolia': {
            'eth_uri': 'https://sepolia.base.org',
            'chain_id': 84532,
            'gas_price': DEFAULT_GAS_PRICE,
            'explorer_url': 'https://base-sepolia.blockscout.com',
        },
    },
}


class NetworkConfig(object):
    """Configuration for a network, including the credential used to deploy to it.
    """

    REQUIRED = ('eth_uri', 'chain_id', 'gas_price', 'private_key')

    def __init__(self, name, eth_uri, chain_id, gas_limit, gas_price, gas_estimate_multiplier, timeout,
                 contract_config, private_key=None, explorer_url=None):
        """Create a new network configuration from parts.

        :param name: Name of the network
        :param eth_uri: URI of HTTP RPC endpoint to access network from
        :param chain_id: Chain ID of the network
        :param gas_limit: Upper bound for gas limit on this network
        :param gas_price: Gas price to use for this network
        :param gas_estimate_multiplier: Amount to scale gas estimates by for this network
        :param timeout: Time to wait for a transaction to be confirmed on this network
        :param contract_config: Configuration for contracts on this network
        :param private_key: Private key used to sign transactions
        :param explorer_url: Base URL of a block explorer for this network
        """
        self.name = name
        self.eth_uri = eth_uri
        self.chain_id = chain_id
        self.gas_limit = gas_limit
        self.gas_price = gas_price
        self.gas_estimate_multiplier = gas_estimate_multiplier
        self.timeout = timeout
        self.contract_config = contract_config
        self.private_key = private_key
        self.explorer_url = explorer_url

        self.validate()

    @classmethod
    def from_dict(cls, d, name, default_contract_config, environ=None):
        """Create a new network configuration from a dictionary.

        :param d: Dictionary containing network configuration
        :param name: Name of the network
        :param default_contract_config: Default contract configuration for all networks
        :param environ: Environment to read the private key from, defaults to the process environment
        :return: New network configuration from provided dictionary
        """
        if environ is None:
            environ = os.environ

        eth_uri = d.get('eth_uri')
        chain_id = d.get('chain_id')
        gas_limit = d.get('gas_limit', DEFAULT_GAS_LIMIT)
        gas_price = d.get('gas_price', DEFAULT_GAS_PRICE)
        gas_estimate_multiplier = d.get('gas_estimate_multiplier', 3)
        timeout = d.get('timeout', 240)
        explorer_url = d.get('explorer_url')

        private_key = d.get('private_key')
        if private_key is None:
            private_key = environ.get(d.get('private_key_env', DEFAULT_PRIVATE_KEY_ENV)) or None

        # Copy default contract config and apply any overrides if applicable
        contract_config = copy.deepcopy(default_contract_config)
        for contract, overrides in d.get('contracts', {}).items():
            contract_config.setdefault(contract, {}).update(overrides or {})

        return cls(name, eth_uri, chain_id, gas_limit, gas_price, gas_estimate_multiplier, timeout, contract_config,
                   private_key=private_key, explorer_url=explorer_url)

    def validate(self):
        """Validate network parameters for sanity.

        :return: None
        """
        if self.eth_uri is not None and not self.eth_uri.startswith('http'):
            raise ValueError('Non-http RPC endpoint specified as eth_uri')
        if self.timeout <= 0:
            raise ValueError('Invalid timeout')
        if self.gas_price is not None and self.gas_price < 0:
            raise ValueError('Invalid gas price')
        if self.gas_estimate_multiplier <= 0:
            raise ValueError('Invalid gas estimate multiplier')

        # Unquoted hex in YAML is parsed as an integer
        for contract, contract_config in self.contract_config.items():
            address = (contract_config or {}).get('address')
            if address is not None and not isinstance(address, str):
                raise ValueError('Address for {0} must be a string, quote it in the configuration (got {1!r})'.format(
                    contract, address))

    def require(self):
        """Ensure every option needed to deploy is present.

        :return: None
        """
        missing = [option for option in self.REQUIRED if getattr(self, option) is None]
        if missing:
            raise ConfigurationMissing('Network {0} is missing required configuration: {1}'.format(
                self.name, ', '.join(missing)))

    def unlock_keyfile(self, keyfile, password):
        """Use the key in an encrypted JSON keyfile as this network's signing credential.

        :param keyfile: Keyfile to unlock
        :param password: Password to decrypt keyfile
        :return: True if success, else False
        """
        try:
            self.private_key = Account.decrypt(keyfile.read(), password)
        except ValueError:
            logger.exception('Incorrect password for keyfile')
            return False

        return True

    def create(self):
        """Create a Network object based on this configuration

        :return: Network object based on this configuration
        """
        return Network(self.name, self.eth_uri, self.chain_id, self.gas_limit, self.gas_price,
                       self.gas_estimate_multiplier, self.timeout, self.contract_config,
                       private_key=self.private_key, explorer_url=self.explorer_url)


class Config(object):
    """Global configuration for a series of deployments.
    """

    def __init__(self, network_configs, default_contract_config):
        """Create a new Config from the provided network configurations and contract configurations.

        :param network_configs: Configurations for all networks known to this deployment
        :param default_contract_config: Default contract configurations for this deployment
        """
        self.network_configs = network_configs
        self.default_contract_config = default_contract_config

        self.validate()

    @classmethod
    def from_dict(cls, d, environ=None):
        """Create a new Config from a dictionary, layered over the built in defaults

        :param d: Dictionary containing configuration
        :param environ: Environment to read private keys from, defaults to the process environment
        :return: New configuration from provided dictionary
        """
        d = d or {}

        default_contract_config = copy.deepcopy(DEFAULT_CONFIG['contracts'])
        for contract, overrides in d.get('contracts', {}).items():
            default_contract_config.setdefault(contract, {}).update(overrides or {})

        networks = copy.deepcopy(DEFAULT_CONFIG['networks'])
        for name, overrides in d.get('networks', {}).items():
            networks.setdefault(name, {}).update(overrides or {})

        network_configs = {k: NetworkConfig.from_dict(v, k, default_contract_config, environ=environ) for k, v in
                           networks.items()}

        return cls(network_configs, default_contract_config)

    @classmethod
    def from_yaml(cls, f, environ=None):
        """Create a new Config from a YAML file

        :param f: File object containing YAML configuration
        :param environ: Environment to read private keys from, defaults to the process environment
        :return: New configuration from provided YAML file
        """
        return Config.from_dict(yaml.safe_load(f), environ=environ)

    def network(self, name):
        """Look up the configuration for a named network.

        :param name: Name of the network
        :return: Configuration for the network
        """
        if name not in self.network_configs:
            raise ConfigurationMissing('No such network {0} defined, check configuration'.format(name))

        return self.network_configs[name]

    def validate(self):
        """Validate parameters for sanity

        :return: None
        """
        if not self.network_configs:
            raise ValueError('No networks configured')
