from setuptools import setup, find_packages

setup(
    name='kubeseed',
    version='0.1.0',
    packages=find_packages(exclude=['kubeseed.tests', 'kubeseed.tests.*']),
    include_package_data=True,
    package_data={
        'kubeseed': ['templates/*.j2'],
    },
    install_requires=[
        'typer[all]',
        'pyyaml',
        'jinja2',
        'jsonschema',
        'pydantic>=2',
        'pydantic-settings',
        'python-dotenv',
        'requests'
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'kubeseed=kubeseed.cli:app'
        ]
    },
    description='Build-time staging and first-boot installers for k3s and RKE2 clusters',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
    python_requires='>=3.8',
)
