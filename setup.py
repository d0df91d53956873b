# setup.py
from setuptools import setup, find_packages

setup(
    name="card_identity",
    version="0.1.0",
    packages=find_packages(include=["card_identity", "card_identity.*"]),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "sqlalchemy>=2.0",
        "pydantic>=2.0",
        "omegaconf",
        "hydra-core",
        "psycopg2-binary",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "card_identity=card_identity.main:run"
        ]
    }
)
