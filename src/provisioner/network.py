import logging
import string
import time

from eth_account import Account
from eth_utils import is_checksum_address, to_checksum_address
from hexbytes import HexBytes
import requests
from web3 import Web3, HTTPProvider
from web3.exceptions import TimeExhausted, Web3Exception

from provisioner.errors import ConfirmationTimeout, DeploymentFailed

logger = logging.getLogger(__name__)

NONCE_SETTLE_INTERVAL = 2


class Network(object):
    """Class for interacting with an EVM network.
    """

    def __init__(self, name, eth_uri, chain_id, gas_limit, gas_price, gas_estimate_multiplier, timeout,
                 contract_config, private_key=None, explorer_url=None):
        """Create a new network.

        :param name: Name of the network
        :param eth_uri: URI of HTTP RPC endpoint to access network from
        :param chain_id: Chain ID of the network
        :param gas_limit: Upper bound for gas limit on this network
        :param gas_price: Gas price to use for this network
        :param gas_estimate_multiplier: Amount to scale gas estimates by for this network
        :param timeout: Time to wait for a transaction to be confirmed on this network
        :param contract_config: Configuration for contracts on this network
        :param private_key: Private key used to sign transactions on this network
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
        self.explorer_url = explorer_url

        self.nonce = 0
        self.w3 = None
        self.priv_key = None
        self.address = None

        if private_key is not None:
            self.unlock_private_key(private_key)

    @classmethod
    def from_web3(cls, name, w3, priv_key, gas_limit, gas_price, gas_estimate_multiplier, timeout, contract_config):
        """Construct a network based on an already-configured Web3 instance.

        :param name: Name of the network
        :param w3: Web3 instance for interacting with this network
        :param priv_key: Private key used to interact with this network
        :param gas_limit: Upper bound for gas limit on this network
        :param gas_price: Gas price to use for this network
        :param gas_estimate_multiplier: Amount to scale gas estimates by for this network
        :param timeout: Time to wait for a transaction to be confirmed on this network
        :param contract_config: Configuration for contracts on this network
        :return: New network based on provided Web3 instance
        """
        ret = cls(name, None, w3.eth.chain_id, gas_limit, gas_price, gas_estimate_multiplier, timeout,
                  contract_config, private_key=priv_key)
        ret.w3 = w3
        ret.nonce = w3.eth.get_transaction_count(ret.address, 'pending')
        return ret

    def connect(self, skip_checks=False):
        """Connect to the network.

        :param skip_checks: Skip sanity checks to ensure network is reachable and healthy
        :return: None
        """
        self.w3 = Web3(HTTPProvider(self.eth_uri))

        logger.info('Connected to ethereum client at %s, chain id: %s', self.eth_uri, self.w3.eth.chain_id)

        if not skip_checks:
            self.__preflight_checks()

    def unlock_private_key(self, private_key):
        """Use a raw private key for signing transactions to this network.

        :param private_key: Hex encoded private key
        :return: None
        """
        self.priv_key = private_key
        self.address = Account.from_key(private_key).address

    def __preflight_checks(self):
        """Perform some sanity checks and retrieve account's current nonce after connecting to a network.

        :return: None
        """
        logger.info('Using address: %s', self.address)

        if self.chain_id != self.w3.eth.chain_id:
            raise ValueError('Connected to network with incorrect chain id, expected {0} got {1}'.format(
                self.chain_id, self.w3.eth.chain_id))

        if self.address is not None and self.w3.eth.get_balance(self.address) == 0:
            logger.warning('Account %s has no balance on %s, transactions will be rejected', self.address, self.name)

        self.nonce = self.__get_nonce()

    def __get_nonce(self):
        """Retrieve account's current nonce.

        :return: Current nonce for account
        """
        if self.address is None:
            logger.warning('No account set, cannot fetch nonce')
            return 0

        last_nonce = -1
        while True:
            # Also include transactions in txpool
            nonce = self.w3.eth.get_transaction_count(self.address, 'pending')

            if nonce == last_nonce:
                logger.info('Settled on transaction count %s', nonce)
                break

            last_nonce = nonce
            time.sleep(NONCE_SETTLE_INTERVAL)

        return nonce

    def normalize_address(self, addr):
        """Normalize an address into a canonical form

        :param addr: Address to normalize
        :return: Normalized address
        """
        if addr is None:
            return None

        if addr.startswith('0x'):
            addr = addr[2:]

        lowhexdigits = set(string.hexdigits.lower())
        if all([c in lowhexdigits for c in addr]):
            addr = to_checksum_address(addr)[2:]

        addr = '0x' + addr
        if not is_checksum_address(addr):
            raise ValueError('Address is mixed case, but checksum is invalid')

        return addr

    def is_contract(self, addr):
        """Determine if an address is a contract or not.

        :param addr: Address to check
        :return: True if address is a contract, else False
        """
        return len(self.w3.eth.get_code(addr)) > 0

    def explorer_link(self, addr):
        """Link to an address on this network's block explorer.

        :param addr: Address to link to
        :return: URL of the address page, or None if no explorer is configured
        """
        if not self.explorer_url:
            return None

        return '{0}/address/{1}'.format(self.explorer_url.rstrip('/'), addr)

    def txopts(self, increment_nonce=True):
        """Default transaction options for this network.

        :param increment_nonce: Should we increment our nonce after fetching our options
        :return: Default transaction options for this network
        """
        logger.info('Preparing tx with nonce %s', self.nonce)
        ret = {
            'chainId': self.chain_id,
            'gas': self.gas_limit,
            'gasPrice': self.gas_price,
            'nonce': self.nonce,
        }

        # Steps run sequentially so there is no need to lock
        if increment_nonce:
            self.nonce += 1

        return ret

    def sign_transaction(self, tx):
        """Sign a provided transaction with our private key.

        :param tx: Transaction to sign
        :return: Signed raw transaction
        """
        logger.debug('Signing transaction: %s', tx)
        return Account.sign_transaction(tx, self.priv_key).raw_transaction

    def send_transaction(self, signed_tx):
        """Transmit a signed transaction to the network.

        :param signed_tx: Transaction to send
        :return: Transaction hash of the transmitted transaction
        """
        try:
            txhash = self.w3.eth.send_raw_transaction(signed_tx)
        except (ValueError, Web3Exception) as e:
            if 'known transaction' in str(e) or 'already known' in str(e):
                txhash = Web3.keccak(signed_tx)
                logger.warning('Got known transaction error for tx %s', txhash.hex())
            else:
                raise DeploymentFailed('Transaction rejected by network: {0}'.format(e)) from e
        except requests.exceptions.RequestException as e:
            raise DeploymentFailed('Could not submit transaction to {0}: {1}'.format(self.eth_uri, e)) from e

        logger.info('Submitting tx %s', HexBytes(txhash).hex())
        return txhash

    def wait_for_transaction(self, txhash):
        """Wait for a transaction to be mined (blocking).

        :param txhash: Transaction hash to wait on
        :return: Transaction receipt for the provided transaction hash
        """
        txhash = HexBytes(txhash)
        try:
            return self.w3.eth.wait_for_transaction_receipt(txhash, timeout=self.timeout)
        except TimeExhausted as e:
            raise ConfirmationTimeout('Transaction {0} not confirmed after {1} seconds'.format(
                txhash.hex(), self.timeout)) from e
        except requests.exceptions.RequestException as e:
            raise ConfirmationTimeout('Lost connection to {0} while waiting for transaction {1}: {2}'.format(
                self.eth_uri, txhash.hex(), e)) from e

    def check_transaction(self, txhash):
        """Check that a transaction succeeded.

        :param txhash: Transaction hash to check
        :return: True if transaction succeeded, else False
        """
        txhash = HexBytes(txhash)
        tx = self.w3.eth.get_transaction(txhash)
        receipt = self.w3.eth.get_transaction_receipt(txhash)

        logger.debug('Receipt for %s: %s', txhash.hex(), dict(receipt))
        return receipt is not None and receipt['gasUsed'] < tx['gas'] and receipt['status'] == 1

    def wait_and_check_transaction(self, txhash):
        """Wait for a transaction to be mined, then check if it succeeded (blocking).

        :param txhash: Transaction hash to wait on and check
        :return: Receipt if transaction succeeded
        """
        txhash = HexBytes(txhash)
        receipt = self.wait_for_transaction(txhash)
        if not self.check_transaction(txhash):
            raise DeploymentFailed('Transaction {0} failed, check network state'.format(txhash.hex()))
        return receipt
