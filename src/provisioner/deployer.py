import json
import logging
import os
import re

from eth_utils import encode_hex
from hexbytes import HexBytes
from web3.exceptions import Web3Exception

from provisioner.errors import DeploymentFailed
from provisioner.provisioner import Handle

logger = logging.getLogger(__name__)


# https://stackoverflow.com/questions/1175208/elegant-python-function-to-convert-camelcase-to-snake-case
def camel_case_to_snake_case(s):
    """Convert camel case names to snake case, used for keys in the results file.

    :param s: String to convert
    :return: Converted string
    """
    s1 = re.sub(r'(.)([A-Z][a-z]+)', r'\1_\2', s)
    return re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', s1).lower()


def artifact_bytecode(artifact):
    """Extract creation bytecode from a Hardhat or solc standard JSON artifact.

    :param artifact: Parsed artifact JSON
    :return: Hex encoded bytecode, or None if the artifact has none
    """
    bytecode = artifact.get('bytecode')
    if isinstance(bytecode, str):
        return bytecode

    return artifact.get('evm', {}).get('bytecode', {}).get('object')


def artifact_link_references(artifact):
    """Extract unresolved library link references from an artifact.

    :param artifact: Parsed artifact JSON
    :return: Dictionary of link references, empty if the artifact is fully linked
    """
    if 'linkReferences' in artifact:
        return artifact['linkReferences'] or {}

    return artifact.get('evm', {}).get('bytecode', {}).get('linkReferences') or {}


class Deployer(object):
    """Deployment backend which creates contracts from compiled artifacts and tracks where they live.
    """

    def __init__(self, network, artifactsdir):
        """Create a new Deployer.

        :param network: Network being deployed to
        :param artifactsdir: Directory containing compiled contracts to deploy
        """
        self.__network = network

        self.contracts = {}
        self.artifacts = {}

        self.__scan_artifacts(artifactsdir)

    def __scan_artifacts(self, artifact_dir):
        """Find all valid contract JSON artifacts in a directory tree.

        :param artifact_dir: Directory to scan
        :return: None
        """
        for root, dirs, files in os.walk(artifact_dir):
            for filename in sorted(files):
                if not filename.endswith('.json') or filename.endswith('.dbg.json'):
                    continue

                path = os.path.join(root, filename)
                with open(path, 'r') as f:
                    j = json.load(f)

                name = j.get('contractName') if isinstance(j, dict) else None
                if name is None or artifact_bytecode(j) is None:
                    logger.warning('%s is not a valid contract, skipping', path)
                    continue

                if name in self.artifacts:
                    logger.warning('Duplicate artifact for %s found at %s, using the first one', name, path)
                    continue

                self.artifacts[name] = j

        logger.info('Found %s contract artifacts in %s', len(self.artifacts), artifact_dir)

    def __artifact(self, name):
        artifact = self.artifacts.get(name)
        if artifact is None:
            raise DeploymentFailed('Artifact {} not found, have you compiled?'.format(name))

        return artifact

    def __bind(self, name, address):
        artifact = self.__artifact(name)
        contract = self.__network.w3.eth.contract(address=address, abi=artifact['abi'],
                                                  bytecode=artifact_bytecode(artifact))
        self.contracts[name] = contract
        return contract

    def at(self, name, address):
        """Configure a contract as already having been deployed at a given address.

        :param name: Name of the contract
        :param address: Address the contract was previously deployed to
        :return: Handle for the existing contract
        """
        try:
            address = self.__network.normalize_address(address)
        except (AttributeError, ValueError) as e:
            raise DeploymentFailed('Invalid address {0!r} for {1}: {2}'.format(address, name, e)) from e

        self.__artifact(name)

        if not self.__network.is_contract(address):
            raise DeploymentFailed('No contract code for {0} found at {1}'.format(name, address))

        logger.warning('Using already deployed contract %s for network %s at %s', name, self.__network.name,
                       address)
        self.__bind(name, address)

        return Handle(name, name, address, None, None)

    def submit_and_confirm(self, name, args):
        """Deploy a contract and wait until its creation is confirmed

        :param name: Name of the contract to deploy
        :param args: Arguments to the contract's constructor
        :return: Handle for the deployed contract
        """
        if name in self.contracts:
            logger.warning('%s has already been deployed, re-deploying as requested', name)

        artifact = self.__artifact(name)
        if artifact_link_references(artifact):
            raise DeploymentFailed('{} requires library linking, which is not supported'.format(name))

        contract = self.__network.w3.eth.contract(abi=artifact['abi'], bytecode=artifact_bytecode(artifact))
        try:
            call = contract.constructor(*args)
        except (TypeError, ValueError, Web3Exception) as e:
            raise DeploymentFailed('Invalid constructor arguments for {0}: {1}'.format(name, e)) from e

        logger.info('Deploying %s with arguments %s', name, list(args))

        txhash = self.transact(call)
        receipt = self.__network.wait_and_check_transaction(txhash)

        address = receipt['contractAddress']
        if address is None:
            raise DeploymentFailed('Transaction {0} did not create a contract'.format(HexBytes(txhash).hex()))

        logger.info('Deployed %s to %s', name, address)
        self.__bind(name, address)

        return Handle(name, name, address, encode_hex(txhash), receipt['blockNumber'])

    def transact(self, call, txopts=None):
        """Perform a transaction with a contract

        :param call: The function to call in this transaction
        :param txopts: Options for this transaction
        :return: Transaction hash of the transmitted transaction
        """
        if txopts is None:
            txopts = {}

        opts = dict(self.__network.txopts())
        opts.update(txopts)
        opts['from'] = self.__network.address

        # Use our estimate but don't exceed gas limit defined in config
        try:
            estimate = call.estimate_gas({k: v for k, v in opts.items() if k in ('from', 'value')})
            gas = int(estimate * self.__network.gas_estimate_multiplier)
            opts['gas'] = gas if opts.get('gas') is None else min(opts['gas'], gas)
        except (ValueError, Web3Exception) as e:
            logger.warning('Error estimating gas, bravely trying anyway: %s', e)

        if opts.get('gas') is None:
            raise DeploymentFailed('No gas limit configured and gas estimation failed')

        try:
            tx = call.build_transaction(opts)
        except (TypeError, ValueError, Web3Exception) as e:
            raise DeploymentFailed('Could not build transaction: {0}'.format(e)) from e

        signed_tx = self.__network.sign_transaction(tx)
        return self.__network.send_transaction(signed_tx)

    def dump_results(self, f, handles):
        """Dump deployment results to a JSON file

        :param f: File object to write to
        :param handles: Handles of confirmed contracts, recorded by step name
        :return: None
        """
        results = {camel_case_to_snake_case(handle.name) + '_address': handle.address for handle in handles}

        results['eth_uri'] = self.__network.eth_uri
        results['chain_id'] = self.__network.chain_id

        logger.info('Dumping deployment results to json')
        logger.debug('Deployment results: %s', json.dumps(results))
        json.dump(results, f, indent=2, sort_keys=True)

    def read_results(self, f):
        """Read the contract addresses recorded in a deployment results JSON file.

        :param f: File object to read JSON from
        :return: Dictionary of contract names to addresses
        """
        logger.info('Loading deployment results from json')

        names = {camel_case_to_snake_case(name): name for name in self.artifacts}
        addresses = {}
        deployment_results = json.load(f)
        for key, address in deployment_results.items():
            if not key.endswith('_address'):
                continue

            name = names.get(key[:-len('_address')])
            if name is None:
                logger.warning('No artifact matches %s in results, skipping', key)
                continue

            addresses[name] = address

        return addresses
