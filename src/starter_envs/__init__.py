"""AWS Starter Kit environment setup.

This package provisions the multi-account AWS environment for a generated
project: organization, per-environment member accounts, deployment users
with access keys, and the CI secrets that carry those keys.
"""

__version__ = "1.0.0"
__author__ = "AWS Starter Kit Team"
