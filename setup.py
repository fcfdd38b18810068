from setuptools import setup, find_packages

setup(
    name='kubestrap',
    version='0.1.0',
    packages=find_packages(exclude=['kubestrap.tests', 'kubestrap.tests.*']),
    include_package_data=True,
    package_data={
        'kubestrap.modules.kubeadm.installer': ['templates/*.j2'],
    },
    install_requires=[
        'typer[all]',
        'pydantic>=2',
        'PyYAML',
        'Jinja2',
        'kubernetes',
        'python-dotenv',
        'requests',
        'tenacity',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'kubestrap=kubestrap.cli:app'
        ]
    },
    author='Your Name',
    description='Idempotent provisioning and teardown of single control-plane kubeadm clusters',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
    python_requires='>=3.8',
)
