class ProvisioningError(Exception):
    """Base class for errors raised while provisioning contracts.

    The provisioner fills in which step failed and which steps had already been confirmed before re-raising.
    """

    def __init__(self, message, step_index=None, step_name=None):
        """Create a new provisioning error.

        :param message: Human-readable description of the failure
        :param step_index: Index of the failing step in execution order, if known
        :param step_name: Name of the failing step, if known
        """
        super().__init__(message)
        self.message = message
        self.step_index = step_index
        self.step_name = step_name
        self.confirmed = []

    def __str__(self):
        if self.step_name is None:
            return self.message

        return 'Step {0} ({1}) failed: {2}'.format(self.step_index, self.step_name, self.message)


class DeploymentFailed(ProvisioningError):
    """The network or backend rejected a contract creation."""


class ConfirmationTimeout(ProvisioningError):
    """A creation transaction was accepted but never confirmed in time."""


class ConfigurationMissing(ProvisioningError):
    """A required configuration option is absent."""
