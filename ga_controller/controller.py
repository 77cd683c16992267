"""
Entry module of the GlobalAccelerator controller.

Run with: kopf run -m ga_controller.controller --all-namespaces
"""

from . import handlers  # registers the kopf handlers
