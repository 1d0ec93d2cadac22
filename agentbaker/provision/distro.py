"""
distro
======

The template bundles, one per OS image family, and the lookup from an
OS type and distribution to exactly one bundle.

A bundle lists the files it writes to the node, the template which renders
the arguments of the CSE command, and its insertion points. An insertion
point names an optional block (see :mod:`agentbaker.provision.addons`) and
the addon template which fills it for this bundle.
"""
from types import MappingProxyType

from agentbaker import PROVISION_DIR, PROVISION_SCRIPT
from agentbaker.datamodel import (
    LINUX, WINDOWS, UBUNTU, UBUNTU_1804, AKS_UBUNTU_1604, AKS_UBUNTU_1804,
    AKS_UBUNTU_GPU_1804, ACC_1604, AKS_WINDOWS_2019)
from agentbaker.errors import ResolutionError
from agentbaker.kubelet import DYNAMIC_KUBELET_CONFIG_FILE
from agentbaker.util.logger import Logger

LOGGER = Logger(__name__)

# insertion points
GPU_DRIVER = "gpu_driver"
GPU_DEVICE_PLUGIN = "gpu_device_plugin"
DOCKER = "docker"
CONTAINERD = "containerd"
DYNAMIC_KUBELET = "dynamic_kubelet"
HOSTS_CONFIG_AGENT = "hosts_config_agent"
WINDOWS_PACKAGE = "windows_package"

GPU_PARAMETER = "CONFIG_GPU_DRIVER_IF_NEEDED"

# the templates see an insertion point as addon_<name>
ADDON_PREFIX = "addon_"

DEFAULT_DISTROS = {
    LINUX: AKS_UBUNTU_1604,
    WINDOWS: AKS_WINDOWS_2019,
}


class FileTemplate:  # pylint: disable=too-few-public-methods
    """
    A file written to the node.

    Args:
        template (str): the template name relative to the template dir
        path (str): the destination path on the node
        permissions (str): e.g. "0644"
    """
    def __init__(self, template, path, permissions="0644"):
        self.template = template
        self.path = path
        self.permissions = permissions

    def __repr__(self):
        return f"FileTemplate({self.template!r}, {self.path!r})"


class AddonTemplate:  # pylint: disable=too-few-public-methods
    """
    The templates of an optional block.

    Args:
        snippet (str): rendered into the insertion point of the main script
        files (FileTemplate): extra files written to the node
    """
    def __init__(self, snippet, *files):
        self.snippet = snippet
        self.files = files

    def __repr__(self):
        return f"AddonTemplate({self.snippet!r})"


# pylint: disable=too-many-instance-attributes,too-few-public-methods
class TemplateBundle:
    """
    A set of templates for one OS image family.

    Args:
        name (str): the bundle name
        os_type (str): Linux or Windows
        distros (tuple): the distributions rendered with this bundle
        files (tuple): of :class:`FileTemplate`, in the order they are
            written
        cse_template (str): renders the arguments of the CSE command
        insertion_points (dict): insertion point -> :class:`AddonTemplate`
        gpu_parameter (str): the CSE variable carrying the GPU driver
            switch, None for bundles without GPU support
        entrypoint (str): the script the CSE command runs
        substitutions (dict): bundle specific values, e.g. the OS release
    """
    # pylint: disable=too-many-arguments
    def __init__(self, name, os_type, distros, files, cse_template,
                 insertion_points, gpu_parameter=None, entrypoint=None,
                 substitutions=None):
        self.name = name
        self.os_type = os_type
        self.distros = tuple(distros)
        self.files = tuple(files)
        self.cse_template = cse_template
        self.insertion_points = MappingProxyType(dict(insertion_points))
        self.gpu_parameter = gpu_parameter
        self.entrypoint = entrypoint
        self.substitutions = MappingProxyType(dict(substitutions or {}))

    @property
    def gpu_capable(self):
        return self.gpu_parameter is not None

    @property
    def templates(self):
        """all templates the bundle renders, addon templates last"""
        names = [f.template for f in self.files] + [self.cse_template]
        for name in sorted(self.insertion_points):
            addon = self.insertion_points[name]
            names.append(addon.snippet)
            names.extend(f.template for f in addon.files)
        return names

    def __repr__(self):
        return f"TemplateBundle({self.name!r})"


LINUX_FILES = (
    FileTemplate("linux/cse_helpers.sh.j2",
                 f"{PROVISION_DIR}/provision_source.sh", "0744"),
    FileTemplate("linux/cse_install.sh.j2",
                 f"{PROVISION_DIR}/provision_installs.sh", "0744"),
    FileTemplate("linux/cse_config.sh.j2",
                 f"{PROVISION_DIR}/provision_configs.sh", "0744"),
    FileTemplate("linux/cse_main.sh.j2", PROVISION_SCRIPT, "0744"),
    FileTemplate("linux/kubelet.service.j2",
                 "/etc/systemd/system/kubelet.service", "0644"),
    FileTemplate("linux/kubelet.default.j2", "/etc/default/kubelet", "0644"),
    FileTemplate("linux/azure.json.j2", "/etc/kubernetes/azure.json", "0600"),
)

LINUX_INSERTION_POINTS = {
    DOCKER: AddonTemplate(
        "addons/docker.sh.j2",
        FileTemplate("addons/docker_daemon.json.j2",
                     "/etc/docker/daemon.json")),
    CONTAINERD: AddonTemplate(
        "addons/containerd.sh.j2",
        FileTemplate("addons/containerd_config.toml.j2",
                     "/etc/containerd/config.toml"),
        FileTemplate("addons/containerd_kubelet.conf.j2",
                     "/etc/systemd/system/kubelet.service.d/10-containerd.conf")),
    DYNAMIC_KUBELET: AddonTemplate(
        "addons/dynamic_kubelet.sh.j2",
        FileTemplate("addons/kubeletconfig.json.j2",
                     DYNAMIC_KUBELET_CONFIG_FILE)),
    HOSTS_CONFIG_AGENT: AddonTemplate(
        "addons/hosts_config_agent.sh.j2",
        FileTemplate("addons/reconcile_private_hosts.sh.j2",
                     f"{PROVISION_DIR}/reconcilePrivateHosts.sh", "0744"),
        FileTemplate("addons/reconcile_private_hosts.service.j2",
                     "/etc/systemd/system/reconcile-private-hosts.service")),
}

GPU_DEVICE_PLUGIN_ADDON = AddonTemplate(
    "addons/gpu_device_plugin.sh.j2",
    FileTemplate("addons/nvidia_device_plugin.yaml.j2",
                 "/etc/kubernetes/addons/nvidia-device-plugin.yaml"))

LINUX_GPU_INSERTION_POINTS = dict(
    LINUX_INSERTION_POINTS,
    gpu_driver=AddonTemplate("addons/gpu_driver.sh.j2"),
    gpu_device_plugin=GPU_DEVICE_PLUGIN_ADDON)


def _linux_bundle(name, distros, os_release, vhd=True, gpu=True,
                  insertion_points=None):
    if insertion_points is None:
        insertion_points = LINUX_GPU_INSERTION_POINTS if gpu else \
            LINUX_INSERTION_POINTS
    substitutions = {"os_release": os_release,
                     "full_install_required": not vhd}
    if not gpu:
        # the linux scripts are shared, the GPU blocks stay empty
        substitutions.update({ADDON_PREFIX + GPU_DRIVER: "",
                              ADDON_PREFIX + GPU_DEVICE_PLUGIN: ""})
    return TemplateBundle(
        name, LINUX, distros, LINUX_FILES, "linux/cse_cmd.sh.j2",
        insertion_points,
        gpu_parameter=GPU_PARAMETER if gpu else None,
        entrypoint=PROVISION_SCRIPT,
        substitutions=substitutions)


BUNDLES = (
    _linux_bundle("aks-ubuntu-16.04", (AKS_UBUNTU_1604,), "16.04"),
    _linux_bundle("aks-ubuntu-18.04", (AKS_UBUNTU_1804,), "18.04"),
    # the driver is part of the image, only the kernel module is loaded
    _linux_bundle("aks-ubuntu-gpu-18.04", (AKS_UBUNTU_GPU_1804,), "18.04",
                  insertion_points=dict(
                      LINUX_GPU_INSERTION_POINTS,
                      gpu_driver=AddonTemplate(
                          "addons/gpu_driver_cached.sh.j2"))),
    _linux_bundle("ubuntu-16.04", (UBUNTU,), "16.04", vhd=False),
    _linux_bundle("ubuntu-18.04", (UBUNTU_1804,), "18.04", vhd=False),
    _linux_bundle("acc-16.04", (ACC_1604,), "16.04", gpu=False),
    TemplateBundle(
        "windows-2019", WINDOWS, (AKS_WINDOWS_2019,),
        (FileTemplate("windows/kuberneteswindowssetup.ps1.j2",
                      "%SYSTEMDRIVE%\\AzureData\\CustomData.bin"),),
        "windows/cse_cmd.ps1.j2",
        {WINDOWS_PACKAGE: AddonTemplate("addons/windows_package.ps1.j2")},
        entrypoint="%SYSTEMDRIVE%\\AzureData\\CustomDataSetupScript.ps1",
        substitutions={"os_release": "2019"}),
)


def index_bundles(bundles):
    """
    Build the (os_type, distro) -> bundle lookup.

    Raises:
        ValueError if a distribution is served by more than one bundle
    """
    index = {}
    for bundle in bundles:
        for distro in bundle.distros:
            key = (bundle.os_type, distro)
            if key in index:
                raise ValueError(
                    f"distro {distro} is served by both {index[key].name} "
                    f"and {bundle.name}")
            index[key] = bundle
    return MappingProxyType(index)


BUNDLE_INDEX = index_bundles(BUNDLES)


def select_template_bundle(os_type, distro, index=BUNDLE_INDEX):
    """
    Return the one template bundle for an OS type and distribution.

    An empty distro selects the default distribution of the OS type.

    Raises:
        ResolutionError if there is no bundle for the combination
    """
    if not distro:
        try:
            distro = DEFAULT_DISTROS[os_type]
        except KeyError:
            raise ResolutionError(f"unknown os type '{os_type}'",
                                  field="os_type", value=os_type) from None
        LOGGER.debug("no distro set, using %s", distro)

    try:
        bundle = index[(os_type, distro)]
    except KeyError:
        raise ResolutionError(
            f"no template bundle for distro '{distro}' on {os_type}",
            field="distro", value=distro) from None

    LOGGER.debug("selected template bundle %s for %s", bundle.name, distro)
    return bundle
