from provisioner.steps import Step


class Main(Step):
    """Deployment steps for the Main contract.

    Main is independent of the lending contracts and is skipped unless enabled with ``Main: {enabled: true}`` in the
    contract config, or selected explicitly.
    """

    OPTIONAL = True
