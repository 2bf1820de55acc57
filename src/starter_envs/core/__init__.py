"""Core components for environment provisioning.

This module contains the foundational components including AWS client
management, configuration handling, retry policy, and state persistence.
"""
