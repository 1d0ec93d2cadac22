"""
versions
========

Resolve the images and packages a node needs for a Kubernetes version.

The per-version references are kept in a YAML table shipped with the
package. The table is loaded once with :func:`load_component_table` and
handed to :class:`VersionComponentResolver`, it is never modified
afterwards.

Example:
    >>> resolver = VersionComponentResolver(load_component_table())
    >>> resolver.resolve("1.15.7", AZURE_PUBLIC_CLOUD_SPEC).hyperkube_image_url
    'k8s.gcr.io/hyperkube-amd64:v1.15.7'
"""
import re
from importlib import resources
from types import MappingProxyType

import yaml
from packaging.version import Version, InvalidVersion

from agentbaker.datamodel import K8sComponents, WINDOWS
from agentbaker.errors import ResolutionError, VersionError
from agentbaker.util.logger import Logger

LOGGER = Logger(__name__)

PAUSE = "pause"
HYPERKUBE = "hyperkube"
WINDOWS_ZIP = "windowszip"

LINUX_COMPONENTS = (PAUSE, HYPERKUBE)
WINDOWS_COMPONENTS = (PAUSE, WINDOWS_ZIP)

# hyperkube is not in the table since 1.17, callers pass their own image
CUSTOM_HYPERKUBE_MIN_VERSION = "1.17.0"

VERSION_RE = re.compile(r"^\d+\.\d+\.\d+([-+.]?[0-9A-Za-z.]+)?$")


def parse_version(version):
    """Parse a Kubernetes version string into a comparable version.

    Only ``major.minor.patch`` with an optional pre-release suffix is
    accepted, e.g. ``1.18.2`` or ``1.19.0-beta.1``.

    Args:
        version (str): the version string

    Returns:
        a ``packaging.version.Version``

    Raises:
        VersionError if the string is not a Kubernetes version
    """
    if not isinstance(version, str) or not VERSION_RE.match(version):
        raise VersionError(f"invalid kubernetes version '{version}'",
                           field="orchestrator_version", value=version)
    try:
        return Version(version)
    except InvalidVersion as err:
        raise VersionError(f"invalid kubernetes version '{version}'",
                           field="orchestrator_version",
                           value=version) from err


def is_kubernetes_version_ge(version, minimum):
    """Numerically compare two versions, "1.9.0" is lower than "1.17.0"."""
    return parse_version(version) >= parse_version(minimum)


def load_component_table(path=None):
    """Load the component table.

    Args:
        path (str): a YAML file, defaults to the table shipped with
            agentbaker

    Returns:
        A read-only mapping of version -> {component kind -> relative path}
    """
    if path is None:
        text = resources.files("agentbaker").joinpath(
            "data/components.yml").read_text()
    else:
        with open(path) as fh:
            text = fh.read()

    return freeze_component_table(yaml.safe_load(text) or {})


def freeze_component_table(table):
    """Validate a component table and make it read-only"""
    frozen = {}
    for version, components in table.items():
        version = str(version)
        parse_version(version)
        frozen[version] = MappingProxyType(
            {str(kind): str(path) for kind, path in components.items()})
    return MappingProxyType(frozen)


def components_for_os(os_type):
    """the component kinds a node of this OS type needs"""
    return WINDOWS_COMPONENTS if os_type == WINDOWS else LINUX_COMPONENTS


class VersionComponentResolver:
    """
    Map a Kubernetes version to fully qualified component references.

    Args:
        table (Mapping): as returned by :func:`load_component_table`
    """

    def __init__(self, table):
        self.table = table

    @property
    def versions(self):
        """all versions in the table, sorted numerically"""
        return sorted(self.table, key=parse_version)

    def _lookup(self, version, kind):
        try:
            components = self.table[version]
        except KeyError:
            raise ResolutionError(
                f"no components known for kubernetes version {version}",
                field="orchestrator_version", value=version) from None
        try:
            return components[kind]
        except KeyError:
            raise ResolutionError(
                f"component '{kind}' is not defined for kubernetes "
                f"version {version}",
                field=kind, value=version) from None

    def resolve(self, version, cloud_spec, kubernetes_config=None,
                kinds=LINUX_COMPONENTS):
        """
        Resolve the requested component kinds.

        Args:
            version (str): the orchestrator version
            cloud_spec (CloudSpecConfig): provides the base paths
            kubernetes_config (KubernetesConfig): may override the base
                paths and the hyperkube image
            kinds (tuple): the component kinds to resolve

        Returns:
            K8sComponents

        Raises:
            ResolutionError if a version or component is unknown
        """
        parse_version(version)
        spec = cloud_spec.kubernetes_spec_config
        image_base = spec.kubernetes_image_base
        mcr_image_base = spec.mcr_kubernetes_image_base
        custom_hyperkube = ""
        if kubernetes_config is not None:
            image_base = kubernetes_config.kubernetes_image_base or image_base
            mcr_image_base = (kubernetes_config.mcr_kubernetes_image_base or
                              mcr_image_base)
            custom_hyperkube = kubernetes_config.custom_hyperkube_image

        components = K8sComponents()
        if PAUSE in kinds:
            components.pod_infra_container_image_url = \
                mcr_image_base + self._lookup(version, PAUSE)

        if HYPERKUBE in kinds:
            if custom_hyperkube and is_kubernetes_version_ge(
                    version, CUSTOM_HYPERKUBE_MIN_VERSION):
                components.hyperkube_image_url = custom_hyperkube
            else:
                if custom_hyperkube:
                    LOGGER.warning(
                        "ignoring custom hyperkube image %s, it is only "
                        "used from kubernetes %s on", custom_hyperkube,
                        CUSTOM_HYPERKUBE_MIN_VERSION)
                components.hyperkube_image_url = \
                    image_base + self._lookup(version, HYPERKUBE)

        if WINDOWS_ZIP in kinds:
            components.windows_package_url = \
                spec.kube_binaries_sas_url_base + \
                self._lookup(version, WINDOWS_ZIP)

        LOGGER.debug("resolved components for %s: %s", version, components)
        return components
