import logging

from provisioner.steps import Step

logger = logging.getLogger(__name__)


class LockAsset(Step):
    """Deployment steps for the LockAsset contract.
    """

    DEPENDENCIES = {'LendManager'}
    """LockAsset is constructed with the LendManager address"""

    def arguments(self, handles, network_config):
        """Build the constructor arguments.

        :param handles: Handles of every contract confirmed so far, by step name
        :param network_config: Configuration of the network being deployed to
        :return: List of constructor arguments
        """
        lend_manager_address = handles['LendManager'].address
        logger.info('Using LendManager at %s', lend_manager_address)
        return [lend_manager_address]
