"""Binds an EC2 instance to a fixed-address secondary ENI from its zone's pool."""

__version__ = "0.1.0"
