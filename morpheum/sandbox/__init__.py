"""Command execution sandboxes."""

from morpheum.sandbox.base import Sandbox
from morpheum.sandbox.jail import JailClient
from morpheum.sandbox.local import LocalSandbox

__all__ = ["JailClient", "LocalSandbox", "Sandbox"]
