"""
baker
=====

Generate the custom data and the CSE command of an agent pool node.

    >>> baker = initialize_template_generator()
    >>> custom_data = baker.get_node_bootstrapping_payload(config)
    >>> cse_cmd = baker.get_node_bootstrapping_cmd(config)

Every call builds a fresh :class:`RenderContext` from its
:class:`~agentbaker.datamodel.NodeBootstrappingConfiguration`, nothing is
cached between calls. A generator can be shared between threads.
"""
from agentbaker import datamodel
from agentbaker.datamodel import KUBERNETES, CONTAINER_RUNTIMES, \
    CONTAINER_DATA_DIR_KEY
from agentbaker.errors import ConfigurationError, ResolutionError
from agentbaker.kubelet import (KubeletFlagMerger, CONTAINERD_KUBELET_FLAGS,
                                get_dynamic_kubelet_config)
from agentbaker.provision.addons import AddonFlags, compose_addons
from agentbaker.provision.cloud_init import get_node_init
from agentbaker.provision.distro import select_template_bundle, \
    DYNAMIC_KUBELET
from agentbaker.provision.render import TemplateRenderer
from agentbaker.util.logger import Logger
from agentbaker.util.net import is_ip, parse_subnet_id
from agentbaker.versions import (VersionComponentResolver,
                                 load_component_table, components_for_os,
                                 parse_version, PAUSE, HYPERKUBE,
                                 WINDOWS_ZIP)

LOGGER = Logger(__name__)

DEFAULT_NETWORK_PLUGIN = "kubenet"
DEFAULT_DNS_SERVICE_IP = "10.0.0.10"

DEFAULT_DATA_DIRS = {
    datamodel.DOCKER: "/var/lib/docker",
    datamodel.CONTAINERD: "/var/lib/containerd",
}

COMPONENT_ATTRIBUTES = {
    PAUSE: "pod_infra_container_image_url",
    HYPERKUBE: "hyperkube_image_url",
    WINDOWS_ZIP: "windows_package_url",
}


def validate_configuration(config):
    """
    Check the fields the templates need but cannot default.

    Raises:
        ConfigurationError naming the first offending field
    """
    cluster = config.cluster
    pool = config.agent_pool_profile
    orchestrator = cluster.orchestrator_profile

    if orchestrator is None:
        raise ConfigurationError("the orchestrator profile is missing",
                                 field="orchestrator_profile")
    if orchestrator.orchestrator_type != KUBERNETES:
        raise ConfigurationError(
            "unsupported orchestrator "
            f"'{orchestrator.orchestrator_type}'",
            field="orchestrator_profile.orchestrator_type")
    if pool is None or pool not in cluster.agent_pool_profiles:
        raise ConfigurationError(
            "the agent pool is not part of the cluster",
            field="agent_pool_profile")
    if cluster.hosted_master_profile is None or \
            not cluster.hosted_master_profile.dns_prefix:
        raise ConfigurationError("the cluster has no DNS prefix",
                                 field="hosted_master_profile.dns_prefix")
    if cluster.service_principal_profile is None or \
            not cluster.service_principal_profile.client_id:
        raise ConfigurationError(
            "a service principal client id is required",
            field="service_principal_profile.client_id")

    if pool.is_windows:
        profile = cluster.windows_profile
        if profile is None or not profile.admin_username or \
                not profile.admin_password:
            raise ConfigurationError(
                "windows nodes need an admin username and password",
                field="windows_profile")
    else:
        profile = cluster.linux_profile
        if profile is None or not profile.admin_username:
            raise ConfigurationError("linux nodes need an admin username",
                                     field="linux_profile.admin_username")
        if not profile.ssh_public_keys:
            raise ConfigurationError("linux nodes need an SSH public key",
                                     field="linux_profile.ssh_public_keys")

    if config.container_runtime not in CONTAINER_RUNTIMES:
        raise ConfigurationError(
            f"unknown container runtime '{config.container_runtime}'",
            field="kubernetes_config.container_runtime")


def check_components(components, kinds):
    """Make sure pre-resolved components carry every kind the node needs"""
    for kind in kinds:
        if not getattr(components, COMPONENT_ATTRIBUTES[kind]):
            raise ResolutionError(
                f"the pre-resolved components lack '{kind}'",
                field=kind)


def cluster_dns_ip(config, kubelet_flags):
    """
    The cluster DNS from the kubelet flags or the KubernetesConfig.

    ``--cluster-dns`` may list several servers separated by commas, every
    one of them must be an IP address, the first one is returned.
    """
    dns = kubelet_flags.get("--cluster-dns") or \
        config.kubernetes_setting("dns_service_ip", DEFAULT_DNS_SERVICE_IP)
    servers = [server.strip() for server in dns.split(",")]
    for server in servers:
        if not is_ip(server):
            raise ConfigurationError(
                f"the cluster DNS '{server}' is not an IP address",
                field="kubelet_config.--cluster-dns")
    return servers[0]


def node_labels(config, gpu_node):
    """The labels kubelet registers the node with"""
    pool = config.agent_pool_profile
    labels = [
        ("kubernetes.azure.com/role", "agent"),
        ("agentpool", pool.name),
        ("storageprofile", "managed" if pool.storage_profile ==
         datamodel.MANAGED_DISKS else "unmanaged"),
        ("kubernetes.azure.com/cluster", config.resource_group_name),
    ]
    if gpu_node:
        labels.append(("accelerator", "nvidia"))
    custom = pool.custom_node_labels or {}
    labels.extend((key, custom[key]) for key in sorted(custom))
    return ",".join(f"{key}={value}" for key, value in labels)


# pylint: disable=too-many-instance-attributes,too-few-public-methods
class RenderContext:
    """
    Everything resolved for one render.

    Args:
        config (NodeBootstrappingConfiguration)
        bundle (TemplateBundle)
        components (K8sComponents)
        kubelet_flags (MergedKubeletFlags): the flags on the command line
        kubelet_config_json (str): the kubelet config file, empty unless
            dynamic kubelet is enabled
        addons (dict): insertion point -> AddonBlock or OMITTED
        gpu_node (bool): the node has an NVIDIA GPU and the bundle
            supports it
        cluster_dns (str): the cluster DNS service IP
    """
    # pylint: disable=too-many-arguments
    def __init__(self, config, bundle, components, kubelet_flags,
                 kubelet_config_json, addons, gpu_node, cluster_dns):
        self.config = config
        self.bundle = bundle
        self.components = components
        self.kubelet_flags = kubelet_flags
        self.kubelet_config_json = kubelet_config_json
        self.addons = addons
        self.gpu_node = gpu_node
        self.cluster_dns = cluster_dns

    def cluster_values(self):
        config = self.config
        cluster = config.cluster
        master = cluster.hosted_master_profile
        principal = cluster.service_principal_profile
        fqdn = master.fqdn or \
            f"{master.dns_prefix}.hcp.{cluster.location}.azmk8s.io"
        admin = cluster.windows_profile if \
            config.agent_pool_profile.is_windows else cluster.linux_profile
        return {
            "admin_username": admin.admin_username,
            "api_server_name": fqdn,
            "cloud_name": config.cloud_spec_config.cloud_name,
            "cluster_dns": self.cluster_dns,
            "dns_prefix": master.dns_prefix,
            "kubernetes_version": config.orchestrator_version,
            "location": cluster.location,
            "network_plugin": config.kubernetes_setting(
                "network_plugin", DEFAULT_NETWORK_PLUGIN),
            "resource_group": config.resource_group_name,
            "service_principal_client_id": principal.client_id,
            "service_principal_secret": principal.secret,
            "subscription_id": config.subscription_id,
            "tenant_id": config.tenant_id,
            "user_assigned_identity_id":
                config.user_assigned_identity_client_id,
        }

    def pool_values(self):
        config = self.config
        pool = config.agent_pool_profile
        subnet = {"subnet": "", "vnet": "", "resource_group": ""}
        if pool.vnet_subnet_id:
            subnet = parse_subnet_id(pool.vnet_subnet_id)
            if subnet is None:
                raise ConfigurationError(
                    f"malformed subnet id '{pool.vnet_subnet_id}'",
                    field="agent_pool_profile.vnet_subnet_id")
        runtime = config.container_runtime
        return {
            "container_data_dir": config.container_runtime_setting(
                CONTAINER_DATA_DIR_KEY, DEFAULT_DATA_DIRS[runtime]),
            "container_runtime": runtime,
            "node_labels": node_labels(config, self.gpu_node),
            "pool_name": pool.name,
            "subnet": subnet["subnet"],
            "vm_size": pool.vm_size,
            "vm_type": "vmss" if pool.is_vmss else "standard",
            "vnet": subnet["vnet"],
            "vnet_resource_group": subnet["resource_group"],
        }

    def component_values(self):
        return {
            "hyperkube_image": self.components.hyperkube_image_url,
            "pause_image": self.components.pod_infra_container_image_url,
            "windows_package_url": self.components.windows_package_url,
        }

    def feature_values(self):
        config = self.config
        return {
            "config_gpu_driver_if_needed": config.config_gpu_driver_if_needed,
            "enable_gpu_device_plugin_if_needed":
                config.enable_gpu_device_plugin_if_needed,
            "gpu_node": self.gpu_node,
            "gpu_parameter": self.bundle.gpu_parameter,
            "nvidia_runtime": self.gpu_node and config.enable_nvidia,
        }

    def kubelet_values(self):
        return {
            "kubelet_config_json": self.kubelet_config_json,
            "kubelet_flag_list": [
                f"{key}={value}" for key, value in
                sorted(self.kubelet_flags.as_dict().items())],
            "kubelet_flags": self.kubelet_flags.to_flag_string(),
        }

    def sources(self):
        """the named value sources the templates are rendered with"""
        return {
            "cluster": self.cluster_values(),
            "pool": self.pool_values(),
            "components": self.component_values(),
            "features": self.feature_values(),
            "kubelet": self.kubelet_values(),
        }


class NodeBootstrapping:  # pylint: disable=too-few-public-methods
    """the two artifacts of a node"""

    def __init__(self, custom_data, cse_cmd):
        self.custom_data = custom_data
        self.cse_cmd = cse_cmd


class TemplateGenerator:
    """
    Render node bootstrapping artifacts.

    Args:
        resolver (VersionComponentResolver): resolves the components of
            configurations which do not bring their own
        renderer (TemplateRenderer)
        merger (KubeletFlagMerger)
    """

    def __init__(self, resolver, renderer=None, merger=None):
        self.resolver = resolver
        self.renderer = renderer or TemplateRenderer()
        self.merger = merger or KubeletFlagMerger()

    def _components(self, config):
        pool = config.agent_pool_profile
        kinds = components_for_os(pool.os_type)
        if config.k8s_components is not None:
            check_components(config.k8s_components, kinds)
            return config.k8s_components
        return self.resolver.resolve(
            config.orchestrator_version, config.cloud_spec_config,
            config.image_settings(), kinds=kinds)

    def build_context(self, config):
        """
        Resolve everything a render needs.

        Raises:
            ConfigurationError, ResolutionError, MergeError,
            InsertionPointError
        """
        validate_configuration(config)
        parse_version(config.orchestrator_version)
        pool = config.agent_pool_profile

        bundle = select_template_bundle(pool.os_type, pool.distro)
        components = self._components(config)

        runtime = config.container_runtime
        flags = AddonFlags(
            is_windows=pool.is_windows,
            gpu_node=pool.is_nvidia_enabled_sku,
            config_gpu_driver_if_needed=config.config_gpu_driver_if_needed,
            enable_gpu_device_plugin_if_needed=(
                config.enable_gpu_device_plugin_if_needed),
            enable_dynamic_kubelet=config.enable_dynamic_kubelet,
            container_runtime=runtime,
            hosts_config_agent=config.hosts_config_agent_enabled)
        addons = compose_addons(flags, bundle)

        kubelet_flags = self.merger.merge(
            {"--pod-infra-container-image":
             components.pod_infra_container_image_url},
            CONTAINERD_KUBELET_FLAGS if runtime == datamodel.CONTAINERD
            else None,
            config.cluster_kubernetes_config.kubelet_config,
            config.pool_kubernetes_config.kubelet_config)

        cluster_dns = cluster_dns_ip(config, kubelet_flags)

        kubelet_config_json = ""
        if addons.get(DYNAMIC_KUBELET):
            kubelet_flags, kubelet_config_json = \
                get_dynamic_kubelet_config(kubelet_flags)

        return RenderContext(
            config, bundle, components, kubelet_flags, kubelet_config_json,
            addons, gpu_node=pool.is_nvidia_enabled_sku and bundle.gpu_capable,
            cluster_dns=cluster_dns)

    def render(self, config):
        """Render the files and CSE arguments of the configured node"""
        context = self.build_context(config)
        LOGGER.debug("rendering pool %s with bundle %s",
                     config.agent_pool_profile.name, context.bundle.name)
        return self.renderer.render(context.bundle, context.addons,
                                    **context.sources())

    def get_node_bootstrapping(self, config):
        """Render once and return both artifacts"""
        rendered = self.render(config)
        linux_profile = config.cluster.linux_profile
        keys = linux_profile.ssh_public_keys if linux_profile else ()
        node_init = get_node_init(rendered, keys)
        return NodeBootstrapping(node_init.custom_data(),
                                 node_init.cse_command())

    def get_node_bootstrapping_payload(self, config):
        """Return the base64 encoded custom data"""
        return self.get_node_bootstrapping(config).custom_data

    def get_node_bootstrapping_cmd(self, config):
        """Return the CSE command"""
        return self.get_node_bootstrapping(config).cse_cmd


def initialize_template_generator(table=None):
    """
    Create a TemplateGenerator.

    Args:
        table (Mapping): a component table, defaults to the one shipped
            with agentbaker
    """
    if table is None:
        table = load_component_table()
    return TemplateGenerator(VersionComponentResolver(table))
