from setuptools import setup, find_packages

'''
Notes: This is the setup file for the RuleBench project.
It defines the package metadata and dependencies required for installation.
'''

setup(
    name = "RuleBench",
    version = "1.0.0",
    description= "RuleBench - Offline validation of detection indicators against replayed attack telemetry",
    packages=find_packages(include=["rulebench", "rulebench.*"]),
    python_requires='>=3.10',
    install_requires=[
        # Core
        "pydantic>=2.0",
        "PyYAML",
        "python-dotenv",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
