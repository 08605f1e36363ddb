from setuptools import setup, find_packages

setup(
    name='portalsync',
    version='0.1.0',
    packages=find_packages(),
    entry_points={
        'console_scripts': [
            'portalsync=portalsync.cli:main',
        ],
    },
    install_requires=[
        'python-dotenv',
        'pyyaml',
        'pydantic>=2',
        'requests[socks]',
        'click',
        'bs4',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    author='While True Industries',
    author_email='adam@whiletrue.industries',
    description='Resilient portal fetcher with a versioned blob store',
    python_requires='>=3.10',
)
