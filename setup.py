from setuptools import setup, find_packages

setup(
    name='yaki',
    version='0.1.0',
    packages=find_packages(exclude=['yaki.tests', 'yaki.tests.*']),
    include_package_data=True,
    install_requires=[
        'typer',
        'kubernetes',
        'python-dotenv',
        'requests',
        'pyyaml',
        'jsonschema',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'yaki=yaki.cli:app'
        ]
    },
    description='Install Kubernetes on a host and init, join or reset the node with kubeadm',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
        'Topic :: System :: Clustering',
    ],
    python_requires='>=3.8',
)
