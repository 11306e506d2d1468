import logging
from collections import OrderedDict, namedtuple
from enum import Enum

from toposort import toposort

from provisioner.errors import DeploymentFailed, ProvisioningError

logger = logging.getLogger(__name__)

Handle = namedtuple('Handle', ('name', 'template', 'address', 'transaction_hash', 'block_number'))
"""Confirmed, addressable result of deploying a template"""


class StepState(Enum):
    """Progress of a single deployment step.
    """

    PENDING = 1
    SUBMITTED = 2
    CONFIRMED = 3
    FAILED = 4


def no_arguments(handles):
    return []


class DeploymentStep(object):
    """A template to deploy, and how to build its constructor arguments from earlier deployments.
    """

    def __init__(self, name, template=None, build_arguments=None, dependencies=None, address=None):
        """Create a new deployment step.

        :param name: Unique name of this step
        :param template: Name of the artifact to deploy, defaults to the step name
        :param build_arguments: Function from confirmed handles (by step name) to constructor arguments
        :param dependencies: Names of steps which must be confirmed first, None to depend on every earlier step
        :param address: Address of an existing deployment to use instead of deploying
        """
        self.name = name
        self.template = template or name
        self.build_arguments = build_arguments or no_arguments
        self.dependencies = None if dependencies is None else set(dependencies)
        self.address = address

    def __repr__(self):
        return '<DeploymentStep {0} ({1})>'.format(self.name, self.template)


def order_steps(steps):
    """Order steps so every step comes after its dependencies.

    Steps with no ordering constraint between them keep the order they were given in.

    :param steps: Steps to order
    :return: List of steps in deployment order
    """
    steps = list(steps)

    positions = {}
    for i, step in enumerate(steps):
        if step.name in positions:
            raise ValueError('Duplicate deployment step {}'.format(step.name))
        positions[step.name] = i

    depgraph = {}
    for i, step in enumerate(steps):
        if step.dependencies is None:
            depgraph[step.name] = {s.name for s in steps[:i]}
            continue

        unknown = step.dependencies - set(positions)
        if unknown:
            raise ValueError('Step {0} depends on unknown steps: {1}'.format(step.name, ', '.join(sorted(unknown))))
        depgraph[step.name] = set(step.dependencies)

    ordered = []
    for level in toposort(depgraph):
        ordered.extend(sorted((steps[positions[name]] for name in level), key=lambda s: positions[s.name]))

    return ordered


def is_placeholder_address(address):
    return not address or int(address, 16) == 0


class Provisioner(object):
    """Deploys a sequence of contracts, feeding confirmed addresses into later constructors.
    """

    def __init__(self, backend, config):
        """Create a new Provisioner.

        :param backend: Deployment backend, providing submit_and_confirm and at
        :param config: NetworkConfig for the network being deployed to
        """
        config.require()

        self.backend = backend
        self.config = config
        self.states = OrderedDict()

    def run(self, steps):
        """Run all deployment steps in order, stopping at the first failure.

        :param steps: Deployment steps to perform
        :return: List of handles, one per step, in deployment order
        """
        ordered = order_steps(steps)
        self.states = OrderedDict((step.name, StepState.PENDING) for step in ordered)

        logger.info('Deployment order on %s: %s', self.config.name, ', '.join(step.name for step in ordered))

        handles = OrderedDict()
        for index, step in enumerate(ordered):
            try:
                handle = self.__run_step(step, handles)
            except ProvisioningError as e:
                self.__fail(index, step, handles, e)
                raise
            except Exception as e:
                error = DeploymentFailed('Unexpected error deploying {0}: {1!r}'.format(step.template, e))
                self.__fail(index, step, handles, error)
                raise error from e

            handles[step.name] = handle
            self.states[step.name] = StepState.CONFIRMED
            logger.info('%s deployed at %s', step.name, handle.address)

        return list(handles.values())

    def __fail(self, index, step, handles, error):
        self.states[step.name] = StepState.FAILED
        error.step_index = index
        error.step_name = step.name
        error.confirmed = list(handles.values())
        logger.error('Aborting deployment: %s', error)

    def __run_step(self, step, handles):
        """Deploy or attach a single step.

        :param step: Step to run
        :param handles: Handles of every step confirmed so far
        :return: Handle for this step
        """
        logger.info('Running deployment for %s', step.name)

        if step.address is not None:
            handle = self.backend.at(step.template, step.address)
        else:
            try:
                args = list(step.build_arguments(OrderedDict(handles)))
            except ProvisioningError:
                raise
            except Exception as e:
                raise DeploymentFailed('Could not build constructor arguments: {0!r}'.format(e)) from e

            self.states[step.name] = StepState.SUBMITTED
            handle = self.backend.submit_and_confirm(step.template, args)

        if is_placeholder_address(handle.address):
            raise DeploymentFailed('Backend reported no address for {}'.format(step.template))

        return handle._replace(name=step.name)


def provision(backend, config, pairs):
    """Deploy an ordered list of (template, argument builder) pairs strictly one after another.

    :param backend: Deployment backend
    :param config: NetworkConfig for the network being deployed to
    :param pairs: Ordered (template, build_arguments) pairs, build_arguments may be None
    :return: List of handles, one per pair, in order
    """
    steps = []
    names = set()
    for i, (template, build_arguments) in enumerate(pairs):
        # Repeated templates get a positional suffix, bumped past any name already taken
        name, suffix = template, i
        while name in names:
            name = '{0}.{1}'.format(template, suffix)
            suffix += 1

        names.add(name)
        steps.append(DeploymentStep(name, template=template, build_arguments=build_arguments))

    return Provisioner(backend, config).run(steps)
