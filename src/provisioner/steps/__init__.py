import importlib
import logging
import pkgutil

from toposort import toposort_flatten

from provisioner.errors import ConfigurationMissing
from provisioner.provisioner import DeploymentStep

logger = logging.getLogger(__name__)
REGISTRY = {}


def register_class(cls):
    """Register a class' existence in the registry.

    :param cls: Class to register
    :return: None
    """
    REGISTRY[cls.__name__] = cls


class __MetaRegistry(type):
    """Metaclass to facilitate registration of subclasses in the registry.
    """

    def __new__(typ, name, bases, class_dict):
        """Register a class' existence in the registry upon import.

        :param name: Name of the class
        :param bases: Base classes
        :param class_dict: Class dictionary
        :return: New class
        """
        cls = type.__new__(typ, name, bases, class_dict)
        if bases[0] != object:
            register_class(cls)
        return cls


class Step(object, metaclass=__MetaRegistry):
    """Deployment step for a contract
    """

    TEMPLATE = None
    """Artifact deployed by this step, defaults to the class name"""

    DEPENDENCIES = set()
    """Dependencies of this step which must be performed first"""

    OPTIONAL = False
    """Optional steps only run when enabled in the contract config or selected explicitly"""

    @property
    def name(self):
        return type(self).__name__

    def arguments(self, handles, network_config):
        """Build the constructor arguments for this step's contract

        :param handles: Handles of every contract confirmed so far, by step name
        :param network_config: Configuration of the network being deployed to
        :return: List of constructor arguments
        """
        return []

    def validate(self, network_config):
        """Ensures prerequisites for step and configuration are correct before proceeding.

        :param network_config: Configuration of the network being deployed to
        :return: True if valid, else False
        """
        return True

    def enabled(self, network_config):
        """Should this step run when no explicit selection of steps is made.

        :param network_config: Configuration of the network being deployed to
        :return: True if enabled, else False
        """
        contract_config = network_config.contract_config.get(self.name, {})
        return contract_config.get('enabled', not self.OPTIONAL)

    def deployment_step(self, network_config, address=None):
        """Describe this step for the provisioner.

        :param network_config: Configuration of the network being deployed to
        :param address: Address of a previous deployment of this contract, if any
        :return: DeploymentStep for this contract
        """
        contract_config = network_config.contract_config.get(self.name, {})
        address = contract_config.get('address', address)

        return DeploymentStep(self.name, template=self.TEMPLATE or self.name,
                              build_arguments=lambda handles: self.arguments(handles, network_config),
                              dependencies=self.DEPENDENCIES, address=address)


def load_step_modules():
    """Import all our submodules so they get registered.

    :return: None
    """
    for _, modname, _ in pkgutil.iter_modules(__path__):
        importlib.import_module('{0}.{1}'.format(__name__, modname))


def load(network_config, to_deploy=None, addresses=None):
    """Select and order the deployment steps for a network.

    :param network_config: Configuration of the network being deployed to
    :param to_deploy: List of what steps to perform, by default all enabled steps will be run
    :param addresses: Addresses of contracts from a previous deployment, by name
    :return: List of DeploymentSteps in deployment order
    """
    load_step_modules()

    if addresses is None:
        addresses = {}

    if to_deploy is None:
        selected = {k for k, v in REGISTRY.items() if v().enabled(network_config)}
    else:
        unknown = set(to_deploy) - set(REGISTRY)
        if unknown:
            raise ConfigurationMissing('No deployment step defined for {}'.format(', '.join(sorted(unknown))))
        selected = set(to_deploy)

    # Dependencies are always deployed (or attached to) along with their dependents
    pending = list(selected)
    while pending:
        name = pending.pop()
        for dependency in REGISTRY[name].DEPENDENCIES:
            if dependency not in REGISTRY:
                raise ConfigurationMissing('{0} depends on {1}, which has no deployment step'.format(name, dependency))
            if dependency not in selected:
                selected.add(dependency)
                pending.append(dependency)

    depgraph = {k: REGISTRY[k].DEPENDENCIES for k in selected}
    ordered_steps = [(k, REGISTRY[k]()) for k in toposort_flatten(depgraph)]

    logger.info('Deployment order: %s', ', '.join([x[0] for x in ordered_steps]))

    for name, step in ordered_steps:
        if not step.validate(network_config):
            raise ConfigurationMissing('Preconditions not met for contract {}, check config'.format(name))

    return [step.deployment_step(network_config, addresses.get(name)) for name, step in ordered_steps]
