"""Provision Azure build VMs from ARM templates and tear them down again."""
