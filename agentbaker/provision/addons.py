"""
addons
======

Decide which optional blocks go into a node's bootstrap.

:func:`compose_addons` returns a value for every insertion point of the
selected bundle: either an :class:`AddonBlock` or :data:`OMITTED`. An addon
which is wanted but has no insertion point in the bundle is an error,
it is never dropped silently.
"""
from agentbaker import datamodel
from agentbaker.errors import InsertionPointError
from agentbaker.provision.distro import (
    GPU_DRIVER, GPU_DEVICE_PLUGIN, DOCKER, CONTAINERD, DYNAMIC_KUBELET,
    HOSTS_CONFIG_AGENT, WINDOWS_PACKAGE)
from agentbaker.util.logger import Logger

LOGGER = Logger(__name__)


class _Omitted:  # pylint: disable=too-few-public-methods
    """Marks an insertion point which stays empty"""

    def __repr__(self):
        return "OMITTED"

    def __bool__(self):
        return False


OMITTED = _Omitted()


class AddonBlock:  # pylint: disable=too-few-public-methods
    """
    An optional block for an insertion point.

    Args:
        name (str): the insertion point
        template (str): the addon template of the bundle
    """
    def __init__(self, name, template):
        self.name = name
        self.template = template

    def __eq__(self, other):
        return (isinstance(other, AddonBlock) and
                (self.name, self.template) == (other.name, other.template))

    def __repr__(self):
        return f"AddonBlock({self.name!r}, {self.template!r})"


class AddonFlags:  # pylint: disable=too-few-public-methods,too-many-instance-attributes
    """
    The feature flags the addon decisions are made on.

    Args:
        is_windows (bool): the pool runs Windows
        gpu_node (bool): the VM size carries an NVIDIA GPU
        config_gpu_driver_if_needed (bool)
        enable_gpu_device_plugin_if_needed (bool)
        enable_dynamic_kubelet (bool)
        container_runtime (str): docker or containerd
        hosts_config_agent (bool): the private cluster runs the hosts agent
    """
    # pylint: disable=too-many-arguments
    def __init__(self, is_windows=False, gpu_node=False,
                 config_gpu_driver_if_needed=False,
                 enable_gpu_device_plugin_if_needed=False,
                 enable_dynamic_kubelet=False,
                 container_runtime=datamodel.DOCKER,
                 hosts_config_agent=False):
        self.is_windows = is_windows
        self.gpu_node = gpu_node
        self.config_gpu_driver_if_needed = config_gpu_driver_if_needed
        self.enable_gpu_device_plugin_if_needed = \
            enable_gpu_device_plugin_if_needed
        self.enable_dynamic_kubelet = enable_dynamic_kubelet
        self.container_runtime = container_runtime
        self.hosts_config_agent = hosts_config_agent


def wanted_addons(flags, bundle):
    """Return the names of the addons the flags ask for, in a fixed order."""
    wanted = []
    # the driver is only installed where the image supports it
    if flags.config_gpu_driver_if_needed and flags.gpu_node and \
            bundle.gpu_capable:
        wanted.append(GPU_DRIVER)
    if flags.enable_gpu_device_plugin_if_needed and flags.gpu_node:
        wanted.append(GPU_DEVICE_PLUGIN)
    if flags.container_runtime == datamodel.CONTAINERD:
        wanted.append(CONTAINERD)
    elif not flags.is_windows:
        wanted.append(DOCKER)
    if flags.is_windows:
        # the windows setup script configures kubelet and hosts itself
        wanted.append(WINDOWS_PACKAGE)
        return wanted
    if flags.enable_dynamic_kubelet:
        wanted.append(DYNAMIC_KUBELET)
    if flags.hosts_config_agent:
        wanted.append(HOSTS_CONFIG_AGENT)
    return wanted


def compose_addons(flags, bundle):
    """
    Map every insertion point of the bundle to a block or OMITTED.

    Args:
        flags (AddonFlags)
        bundle (TemplateBundle)

    Returns:
        dict of insertion point -> AddonBlock or OMITTED

    Raises:
        InsertionPointError if a wanted addon has no insertion point
    """
    wanted = wanted_addons(flags, bundle)
    for name in wanted:
        if name not in bundle.insertion_points:
            raise InsertionPointError(
                f"template bundle {bundle.name} has no insertion point "
                f"for {name}", bundle=bundle.name, insertion_point=name)

    addons = {}
    for name in sorted(bundle.insertion_points):
        if name in wanted:
            addons[name] = AddonBlock(name, bundle.insertion_points[name])
        else:
            addons[name] = OMITTED
    LOGGER.debug("addons for %s: %s", bundle.name,
                 ", ".join(wanted) or "none")
    return addons
