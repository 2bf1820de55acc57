"""Environment provisioning components.

This package contains the identity, account and deployment user
provisioners and the orchestrator that sequences them.
"""
