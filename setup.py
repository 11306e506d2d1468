from setuptools import find_packages, setup


def parse_requirements():
    with open('requirements.txt', 'r') as f:
        return [r if not r.startswith('git') else '{1} @ {0}'.format(*r.split('#egg=', 1))
                for r in f.read().splitlines() if r]


setup(
    name='provisioner',
    version='0.1.0',
    description='Dependency ordered deployment of smart contracts to EVM networks',
    license='MIT',
    python_requires='>=3.8,<4',
    install_requires=parse_requirements(),
    extras_require={
        'test': [
            'pytest',
            'eth-tester[py-evm]>=0.12.0b1',
        ],
    },
    include_package_data=True,
    packages=find_packages('src'),
    package_dir={'': 'src'},
    entry_points={
        'console_scripts': [
            'provisioner=provisioner.__main__:cli',
        ],
    },
)
