"""
datamodel
=========

The configuration tree a node is rendered from. These objects are created
by the caller (or by :func:`agentbaker.config.load_config`) and are never
modified by the engine.
"""
import re

# orchestrators
KUBERNETES = "Kubernetes"

# operating systems
LINUX = "Linux"
WINDOWS = "Windows"

# distributions
UBUNTU = "ubuntu"
UBUNTU_1804 = "ubuntu-18.04"
AKS_UBUNTU_1604 = "aks-ubuntu-16.04"
AKS_UBUNTU_1804 = "aks-ubuntu-18.04"
AKS_UBUNTU_GPU_1804 = "aks-ubuntu-gpu-18.04"
ACC_1604 = "acc-16.04"
AKS_WINDOWS_2019 = "aks-windows-2019"

# container runtimes
DOCKER = "docker"
CONTAINERD = "containerd"
CONTAINER_RUNTIMES = (DOCKER, CONTAINERD)

# the key in container_runtime_config which relocates the runtime data
CONTAINER_DATA_DIR_KEY = "dataDir"

# availability profiles
AVAILABILITY_SET = "AvailabilitySet"
VIRTUAL_MACHINE_SCALE_SETS = "VirtualMachineScaleSets"

# storage profiles
MANAGED_DISKS = "ManagedDisks"
STORAGE_ACCOUNT = "StorageAccount"

# Standard_NC6, Standard_NC24rs_v3, Standard_ND40rs_v2, Standard_NV12s_v3
# but not the AMD based Standard_NV*as_v4 series
NVIDIA_SKU_RE = re.compile(r"^standard_n[cdv]\d+", re.IGNORECASE)
AMD_GPU_SKU_RE = re.compile(r"^standard_nv\d+as_v4$", re.IGNORECASE)


def is_nvidia_enabled_sku(vm_size):
    """Return True if the VM size carries an NVIDIA GPU"""
    vm_size = vm_size or ""
    return bool(NVIDIA_SKU_RE.match(vm_size)) and \
        not AMD_GPU_SKU_RE.match(vm_size)


class PrivateCluster:  # pylint: disable=too-few-public-methods
    """
    Private cluster settings.

    Args:
        enabled (bool): the API server has no public endpoint
        enable_hosts_config_agent (bool or None): run the agent which keeps
            /etc/hosts in sync with the private API server address.
            ``None`` means unset and behaves like ``False``.
    """
    def __init__(self, enabled=None, enable_hosts_config_agent=None):
        self.enabled = enabled
        self.enable_hosts_config_agent = enable_hosts_config_agent

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        return cls(enabled=data.get('enabled'),
                   enable_hosts_config_agent=data.get(
                       'enable_hosts_config_agent'))


# pylint: disable=too-many-instance-attributes,too-few-public-methods
class KubernetesConfig:
    """
    Kubernetes settings, either for the whole cluster or for a pool.

    Args:
        kubelet_config (dict): kubelet flags, e.g. ``{"--max-pods": "110"}``
        container_runtime (str): ``docker`` or ``containerd``
        container_runtime_config (dict): e.g. ``{"dataDir": "/mnt/containers"}``
        private_cluster (PrivateCluster)
        custom_hyperkube_image (str): replaces the hyperkube image of the
            version table (from 1.17.0 on)
        kubernetes_image_base (str): overrides the cloud's image base
        mcr_kubernetes_image_base (str): overrides the cloud's MCR base
        network_plugin (str): e.g. ``kubenet`` or ``azure``
        dns_service_ip (str): the cluster DNS service IP
    """
    def __init__(self, kubelet_config=None, container_runtime="",
                 container_runtime_config=None, private_cluster=None,
                 custom_hyperkube_image="", kubernetes_image_base="",
                 mcr_kubernetes_image_base="", network_plugin="",
                 dns_service_ip=""):
        self.kubelet_config = kubelet_config
        self.container_runtime = container_runtime
        self.container_runtime_config = container_runtime_config
        self.private_cluster = private_cluster
        self.custom_hyperkube_image = custom_hyperkube_image
        self.kubernetes_image_base = kubernetes_image_base
        self.mcr_kubernetes_image_base = mcr_kubernetes_image_base
        self.network_plugin = network_plugin
        self.dns_service_ip = dns_service_ip

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        return cls(
            kubelet_config=data.get('kubelet_config'),
            container_runtime=data.get('container_runtime', ""),
            container_runtime_config=data.get('container_runtime_config'),
            private_cluster=PrivateCluster.from_dict(
                data.get('private_cluster')),
            custom_hyperkube_image=data.get('custom_hyperkube_image', ""),
            kubernetes_image_base=data.get('kubernetes_image_base', ""),
            mcr_kubernetes_image_base=data.get(
                'mcr_kubernetes_image_base', ""),
            network_plugin=data.get('network_plugin', ""),
            dns_service_ip=data.get('dns_service_ip', ""))


class OrchestratorProfile:
    """the orchestrator and its version"""
    def __init__(self, orchestrator_type=KUBERNETES, orchestrator_version="",
                 kubernetes_config=None):
        self.orchestrator_type = orchestrator_type
        self.orchestrator_version = orchestrator_version
        self.kubernetes_config = kubernetes_config

    @classmethod
    def from_dict(cls, data):
        return cls(
            orchestrator_type=data.get('type', KUBERNETES),
            orchestrator_version=str(data.get('version', "")),
            kubernetes_config=KubernetesConfig.from_dict(
                data.get('kubernetes_config')))


class AgentPoolProfile:
    """
    A pool of identically configured worker nodes.

    Settings in ``kubernetes_config`` take precedence over the cluster
    level ``KubernetesConfig``.
    """
    def __init__(self, name, count=1, vm_size="", storage_profile=MANAGED_DISKS,
                 os_type=LINUX, distro="", vnet_subnet_id="",
                 availability_profile=VIRTUAL_MACHINE_SCALE_SETS,
                 custom_node_labels=None, kubernetes_config=None):
        self.name = name
        self.count = count
        self.vm_size = vm_size
        self.storage_profile = storage_profile
        self.os_type = os_type
        self.distro = distro
        self.vnet_subnet_id = vnet_subnet_id
        self.availability_profile = availability_profile
        self.custom_node_labels = custom_node_labels
        self.kubernetes_config = kubernetes_config

    @property
    def is_windows(self):
        return self.os_type == WINDOWS

    @property
    def is_vmss(self):
        return self.availability_profile == VIRTUAL_MACHINE_SCALE_SETS

    @property
    def is_nvidia_enabled_sku(self):
        return is_nvidia_enabled_sku(self.vm_size)

    @classmethod
    def from_dict(cls, data):
        return cls(
            name=data['name'],
            count=data.get('count', 1),
            vm_size=data.get('vm_size', ""),
            storage_profile=data.get('storage_profile', MANAGED_DISKS),
            os_type=data.get('os_type', LINUX),
            distro=data.get('distro', ""),
            vnet_subnet_id=data.get('vnet_subnet_id', ""),
            availability_profile=data.get('availability_profile',
                                          VIRTUAL_MACHINE_SCALE_SETS),
            custom_node_labels=data.get('custom_node_labels'),
            kubernetes_config=KubernetesConfig.from_dict(
                data.get('kubernetes_config')))


class HostedMasterProfile:
    """the managed control plane, nodes reach it through fqdn"""
    def __init__(self, dns_prefix="", fqdn=""):
        self.dns_prefix = dns_prefix
        self.fqdn = fqdn

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        return cls(dns_prefix=data.get('dns_prefix', ""),
                   fqdn=data.get('fqdn', ""))


class LinuxProfile:
    """the admin user and SSH public keys of linux nodes"""
    def __init__(self, admin_username="", ssh_public_keys=None):
        self.admin_username = admin_username
        self.ssh_public_keys = list(ssh_public_keys or [])

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        return cls(admin_username=data.get('admin_username', ""),
                   ssh_public_keys=data.get('ssh_public_keys'))


class WindowsProfile:
    """the admin credentials of windows nodes"""
    def __init__(self, admin_username="", admin_password=""):
        self.admin_username = admin_username
        self.admin_password = admin_password

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        return cls(admin_username=data.get('admin_username', ""),
                   admin_password=data.get('admin_password', ""))


class ServicePrincipalProfile:
    """the credentials kubelet and the cloud provider use"""
    def __init__(self, client_id="", secret=""):
        self.client_id = client_id
        self.secret = secret

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        return cls(client_id=data.get('client_id', ""),
                   secret=data.get('secret', ""))


class ClusterSpec:
    """
    The root of the configuration tree.

    Args:
        location (str): the cloud region, e.g. ``southcentralus``
        orchestrator_profile (OrchestratorProfile)
        hosted_master_profile (HostedMasterProfile)
        agent_pool_profiles (list): of :class:`AgentPoolProfile`
        linux_profile (LinuxProfile)
        windows_profile (WindowsProfile)
        service_principal_profile (ServicePrincipalProfile)
    """
    def __init__(self, location, orchestrator_profile,
                 hosted_master_profile=None, agent_pool_profiles=None,
                 linux_profile=None, windows_profile=None,
                 service_principal_profile=None,
                 type="Microsoft.ContainerService/ManagedClusters"):  # pylint: disable=redefined-builtin
        self.location = location
        self.type = type
        self.orchestrator_profile = orchestrator_profile
        self.hosted_master_profile = hosted_master_profile
        self.agent_pool_profiles = list(agent_pool_profiles or [])
        self.linux_profile = linux_profile
        self.windows_profile = windows_profile
        self.service_principal_profile = service_principal_profile

    def get_agent_pool(self, name):
        """Return the agent pool with the given name or None"""
        for pool in self.agent_pool_profiles:
            if pool.name == name:
                return pool
        return None

    @classmethod
    def from_dict(cls, data):
        return cls(
            location=data['location'],
            orchestrator_profile=OrchestratorProfile.from_dict(
                data['orchestrator']),
            hosted_master_profile=HostedMasterProfile.from_dict(
                data.get('hosted_master')),
            agent_pool_profiles=[AgentPoolProfile.from_dict(pool) for pool
                                 in data.get('agent_pools', [])],
            linux_profile=LinuxProfile.from_dict(data.get('linux_profile')),
            windows_profile=WindowsProfile.from_dict(
                data.get('windows_profile')),
            service_principal_profile=ServicePrincipalProfile.from_dict(
                data.get('service_principal')))


class KubernetesSpecConfig:
    """image and binary base paths of a cloud"""
    def __init__(self, kubernetes_image_base, mcr_kubernetes_image_base,
                 kube_binaries_sas_url_base):
        self.kubernetes_image_base = kubernetes_image_base
        self.mcr_kubernetes_image_base = mcr_kubernetes_image_base
        self.kube_binaries_sas_url_base = kube_binaries_sas_url_base


class CloudSpecConfig:
    """the endpoints of a cloud environment"""
    def __init__(self, cloud_name, kubernetes_spec_config):
        self.cloud_name = cloud_name
        self.kubernetes_spec_config = kubernetes_spec_config


AZURE_PUBLIC_CLOUD_SPEC = CloudSpecConfig(
    cloud_name="AzurePublicCloud",
    kubernetes_spec_config=KubernetesSpecConfig(
        kubernetes_image_base="k8s.gcr.io/",
        mcr_kubernetes_image_base="mcr.microsoft.com/",
        kube_binaries_sas_url_base="https://acs-mirror.azureedge.net/kubernetes/"))


class K8sComponents:
    """
    The version specific image and package references of a node.

    A component which was not requested for the pool's OS is None.
    """
    def __init__(self, pod_infra_container_image_url=None,
                 hyperkube_image_url=None, windows_package_url=None):
        self.pod_infra_container_image_url = pod_infra_container_image_url
        self.hyperkube_image_url = hyperkube_image_url
        self.windows_package_url = windows_package_url

    def __eq__(self, other):
        return isinstance(other, K8sComponents) and vars(self) == vars(other)

    def __repr__(self):
        return "K8sComponents(%s)" % ", ".join(
            "%s=%r" % item for item in sorted(vars(self).items()))


class NodeBootstrappingConfiguration:
    """
    Everything needed to render the custom data and CSE command of one
    agent pool.

    Args:
        cluster (ClusterSpec)
        agent_pool_profile (AgentPoolProfile): the pool to render, it must
            be one of ``cluster.agent_pool_profiles``
        cloud_spec_config (CloudSpecConfig)
        k8s_components (K8sComponents): pre-resolved components, if None
            they are resolved from the version table
        tenant_id (str)
        subscription_id (str)
        resource_group_name (str)
        user_assigned_identity_client_id (str)
        config_gpu_driver_if_needed (bool): install the GPU driver on GPU SKUs
        enable_gpu_device_plugin_if_needed (bool): deploy the NVIDIA
            device plugin on GPU SKUs
        enable_dynamic_kubelet (bool): configure kubelet via a config file
        enable_nvidia (bool): use the nvidia container runtime on GPU SKUs
    """
    # pylint: disable=too-many-arguments
    def __init__(self, cluster, agent_pool_profile,
                 cloud_spec_config=AZURE_PUBLIC_CLOUD_SPEC,
                 k8s_components=None, tenant_id="", subscription_id="",
                 resource_group_name="", user_assigned_identity_client_id="",
                 config_gpu_driver_if_needed=True,
                 enable_gpu_device_plugin_if_needed=False,
                 enable_dynamic_kubelet=False,
                 enable_nvidia=False):
        self.cluster = cluster
        self.agent_pool_profile = agent_pool_profile
        self.cloud_spec_config = cloud_spec_config
        self.k8s_components = k8s_components
        self.tenant_id = tenant_id
        self.subscription_id = subscription_id
        self.resource_group_name = resource_group_name
        self.user_assigned_identity_client_id = user_assigned_identity_client_id
        self.config_gpu_driver_if_needed = config_gpu_driver_if_needed
        self.enable_gpu_device_plugin_if_needed = \
            enable_gpu_device_plugin_if_needed
        self.enable_dynamic_kubelet = enable_dynamic_kubelet
        self.enable_nvidia = enable_nvidia

    @property
    def orchestrator_version(self):
        return self.cluster.orchestrator_profile.orchestrator_version

    @property
    def cluster_kubernetes_config(self):
        """the cluster level KubernetesConfig, an empty one if not set"""
        return (self.cluster.orchestrator_profile.kubernetes_config or
                KubernetesConfig())

    @property
    def pool_kubernetes_config(self):
        """the pool level KubernetesConfig, an empty one if not set"""
        return self.agent_pool_profile.kubernetes_config or KubernetesConfig()

    def kubernetes_setting(self, attribute, default=""):
        """
        Return a KubernetesConfig attribute, the pool level value wins over
        the cluster level value if it is set.
        """
        value = getattr(self.pool_kubernetes_config, attribute)
        if not value:
            value = getattr(self.cluster_kubernetes_config, attribute)
        return value or default

    def container_runtime_setting(self, key, default=""):
        """Look up a container_runtime_config key with pool precedence"""
        for kc in (self.pool_kubernetes_config,
                   self.cluster_kubernetes_config):
            value = (kc.container_runtime_config or {}).get(key)
            if value:
                return value
        return default

    @property
    def container_runtime(self):
        return self.kubernetes_setting('container_runtime', DOCKER)

    @property
    def hosts_config_agent_enabled(self):
        """
        The hosts config agent switch. A pool which sets it overrides the
        cluster, unset on both levels counts as off.
        """
        for kc in (self.pool_kubernetes_config,
                   self.cluster_kubernetes_config):
            private_cluster = kc.private_cluster
            if private_cluster is not None and \
                    private_cluster.enable_hosts_config_agent is not None:
                return private_cluster.enable_hosts_config_agent is True
        return False

    def image_settings(self):
        """
        A KubernetesConfig with the image overrides in effect for the pool,
        each one taken from the pool if set there, else from the cluster.
        """
        return KubernetesConfig(
            custom_hyperkube_image=self.kubernetes_setting(
                'custom_hyperkube_image'),
            kubernetes_image_base=self.kubernetes_setting(
                'kubernetes_image_base'),
            mcr_kubernetes_image_base=self.kubernetes_setting(
                'mcr_kubernetes_image_base'))
