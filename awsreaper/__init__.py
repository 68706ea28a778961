"""
awsreaper - finds abandoned AWS resources and reaps them.

Resources that match the configured filters are walked through an escalating
notification lifecycle and terminated at the end of it, unless their owner
whitelists, stops or snoozes them through a signed action link.
"""

__version__ = "0.1.0"
