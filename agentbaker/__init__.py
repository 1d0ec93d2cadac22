# pylint: disable=missing-docstring
from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version('agentbaker')
except PackageNotFoundError:
    __version__ = '0.1.0'

# Defining some constants
PROVISION_DIR = "/opt/azure/containers"
PROVISION_SCRIPT = f"{PROVISION_DIR}/provision.sh"
PROVISION_LOG = "/var/log/azure/cluster-provision.log"
