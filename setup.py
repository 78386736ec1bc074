from setuptools import find_packages, setup

setup(
    name='cron-build',
    version='1.0.0',
    description='Build the git branches that changed since the last run',
    packages=find_packages(exclude=[
        'cronbuild.test',
        'cronbuild.test.*',
    ]),
    python_requires='>=3.8',
    install_requires=[
        'chardet',
        'python-dateutil',
        'requests',
        'simplejson',
    ],
    extras_require={
        'test': [
            'mock',
            'pytest',
        ],
    },
    entry_points={
        "console_scripts": [
            "cron-build = cronbuild.main:main",
        ],
    }
)
