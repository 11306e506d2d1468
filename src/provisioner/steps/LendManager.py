from provisioner.steps import Step


class LendManager(Step):
    """Deployment steps for the LendManager contract.
    """
